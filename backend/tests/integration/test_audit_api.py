"""
Integration Tests for the Audit API
Tests the template -> form -> PDF -> ledger flow over HTTP
"""
import uuid
import pytest
from httpx import AsyncClient
from sqlalchemy import update

from haccp_audit.core.exceptions import BlobUploadError, DocumentStoreError
from haccp_audit.core.security import create_access_token
from haccp_audit.main import app
from haccp_audit.models.audit_document import AuditDocument
from haccp_audit.services.audit_store import AuditStore
from haccp_audit.services.blob_store import LocalBlobStore, get_blob_store
from haccp_audit.services.version_ledger import VersionLedger

API = '/api/v1'


class PdfRejectingBlobStore(LocalBlobStore):
    async def put(self, key, data, content_type="application/octet-stream"):
        if key.endswith(".pdf"):
            raise BlobUploadError(key, "bucket unavailable")
        return await super().put(key, data, content_type)


async def create_template(client: AsyncClient, body: dict) -> dict:
    response = await client.post(f'{API}/admin/audit-template', json=body)
    assert response.status_code == 201
    return response.json()['auditTemplate']


async def fill(client: AsyncClient, template_id: str, body: dict) -> dict:
    response = await client.post(f'{API}/user/audit-form/{template_id}', json=body)
    assert response.status_code == 201
    return response.json()


class TestTemplateEndpoints:
    """Admin template CRUD"""

    @pytest.mark.asyncio
    async def test_create_template(self, client: AsyncClient):
        response = await client.post(f'{API}/admin/audit-template',
                                     json={'restaurantName': 'Cafe X', 'sections': []})

        assert response.status_code == 201
        data = response.json()
        assert data['message'] == 'Audit template created successfully'
        assert data['auditTemplate']['status'] == 'NOT FILLED'
        assert data['auditTemplate']['version'] == 0
        assert data['auditTemplate']['restaurantName'] == 'Cafe X'

    @pytest.mark.asyncio
    async def test_create_template_requires_name(self, client: AsyncClient):
        response = await client.post(f'{API}/admin/audit-template', json={'sections': []})

        assert response.status_code == 422
        error = response.json()['error']
        assert error['code'] == 'VALIDATION_ERROR'
        assert error['details']['errors'][0]['field'] == 'restaurantName'

    @pytest.mark.asyncio
    async def test_legacy_flat_sections(self, client: AsyncClient):
        template = await create_template(client, {
            'restaurantName': 'Cafe X',
            'sections': [{'question': 'Hand wash station stocked?'}],
        })

        assert template['sections'][0]['sectionTitle'] == 'General'
        assert template['sections'][0]['questions'][0]['question'] == 'Hand wash station stocked?'

    @pytest.mark.asyncio
    async def test_list_get_update_delete(self, client: AsyncClient, template_payload):
        template = await create_template(client, template_payload)

        listed = await client.get(f'{API}/admin/audit-templates')
        assert [t['id'] for t in listed.json()] == [template['id']]

        fetched = await client.get(f'{API}/admin/audit-template/{template["id"]}')
        assert fetched.json()['nameOfCompany'] == template_payload['nameOfCompany']

        updated = await client.put(f'{API}/admin/audit-template/{template["id"]}',
                                   json={'restaurantName': 'Renamed'})
        assert updated.status_code == 200
        assert updated.json()['auditTemplate']['restaurantName'] == 'Renamed'
        assert updated.json()['auditTemplate']['version'] == 0

        deleted = await client.delete(f'{API}/admin/audit-template/{template["id"]}')
        assert deleted.json() == {'message': 'Audit template deleted successfully'}

        missing = await client.get(f'{API}/admin/audit-template/{template["id"]}')
        assert missing.status_code == 404
        assert missing.json()['error']['code'] == 'TEMPLATE_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_filled_form_not_editable_as_template(self, client: AsyncClient, template_payload, fill_payload):
        template = await create_template(client, template_payload)
        form = (await fill(client, template['id'], fill_payload))['auditForm']

        response = await client.put(f'{API}/admin/audit-template/{form["id"]}', json={'restaurantName': 'x'})
        assert response.status_code == 404


class TestFillEndpoints:
    """Filling templates"""

    @pytest.mark.asyncio
    async def test_fill_returns_form_and_pdf(self, client: AsyncClient, fill_payload):
        template = await create_template(client, {'restaurantName': 'Cafe X', 'sections': []})

        data = await fill(client, template['id'], fill_payload)

        assert data['message'] == 'Audit form created successfully'
        assert data['versionNumber'] == 1
        assert data['auditForm']['status'] == 'FILLED'
        assert data['auditForm']['version'] == 1
        assert data['auditForm']['restaurantName'] == 'Cafe X'
        assert data['auditForm']['dateOfAudit'] == '2024-05-01'
        assert data['pdfUrl'].endswith(f'Audit_Form_{data["auditForm"]["id"]}_v1.pdf')

        ledger = await client.get(f'{API}/user/audit-form/{data["auditForm"]["id"]}')
        assert ledger.status_code == 200
        assert ledger.json()['versionNumber'] == 1
        assert ledger.json()['pdfUrl'] == data['pdfUrl']

    @pytest.mark.asyncio
    async def test_hygiene_audit_scenario(self, client: AsyncClient):
        template = await create_template(client, {'restaurantName': 'Cafe X', 'sections': []})
        assert template['status'] == 'NOT FILLED'

        data = await fill(client, template['id'], {
            'userId': 'auditor-1',
            'auditType': 'Annual audit',
            'manpower': {'male': 2, 'female': 1},
            'sections': [{'sectionTitle': 'Hygiene', 'questions': [
                {'question': 'Handwashing?', 'compliance': 'Y', 'evidenceAndComments': 'ok'},
            ]}],
        })

        assert data['auditForm']['version'] == 1
        assert data['auditForm']['status'] == 'FILLED'
        assert data['auditForm']['manpower'] == {'male': 2, 'female': 1}

        history = await client.get(f'{API}/user/audit-form/{data["auditForm"]["id"]}/versions')
        assert len(history.json()) == 1
        assert history.json()[0]['versionNumber'] == 1
        assert history.json()[0]['pdfUrl']

    @pytest.mark.asyncio
    async def test_fill_with_template_id_in_body(self, client: AsyncClient, template_payload, fill_payload):
        template = await create_template(client, template_payload)
        fill_payload['templateId'] = template['id']

        response = await client.post(f'{API}/user/audit-form', json=fill_payload)
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_fill_without_template_id(self, client: AsyncClient, fill_payload):
        response = await client.post(f'{API}/user/audit-form', json=fill_payload)

        assert response.status_code == 422
        assert response.json()['error']['code'] == 'TEMPLATE_ID_REQUIRED'

    @pytest.mark.asyncio
    async def test_fill_unknown_template(self, client: AsyncClient, fill_payload):
        missing_id = str(uuid.uuid4())

        response = await client.post(f'{API}/user/audit-form/{missing_id}', json=fill_payload)

        assert response.status_code == 404
        assert response.json()['success'] is False
        assert response.json()['error']['code'] == 'TEMPLATE_NOT_FOUND'

        ledger = await client.get(f'{API}/user/audit-form/{missing_id}')
        assert ledger.status_code == 404

    @pytest.mark.asyncio
    async def test_user_id_from_bearer_token(self, client: AsyncClient, template_payload, fill_payload):
        template = await create_template(client, template_payload)
        del fill_payload['userId']
        headers = {'Authorization': f'Bearer {create_access_token({"sub": "auditor-7"})}'}

        response = await client.post(f'{API}/user/audit-form/{template["id"]}', json=fill_payload,
                                     headers=headers)

        assert response.status_code == 201
        assert response.json()['auditForm']['userId'] == 'auditor-7'

    @pytest.mark.asyncio
    async def test_invalid_bearer_token(self, client: AsyncClient):
        response = await client.get(f'{API}/user/audit-form/{uuid.uuid4()}',
                                    headers={'Authorization': 'Bearer garbage'})

        assert response.status_code == 401
        assert response.json()['error']['code'] == 'AUTH_FAILED'

    @pytest.mark.asyncio
    async def test_upload_failure_returns_207(self, client: AsyncClient, tmp_path, template_payload, fill_payload):
        """Test a saved form is still returned when the PDF cannot be published"""
        template = await create_template(client, template_payload)
        app.dependency_overrides[get_blob_store] = lambda: PdfRejectingBlobStore(tmp_path / 'rejecting',
                                                                                'http://test/media')

        response = await client.post(f'{API}/user/audit-form/{template["id"]}', json=fill_payload)

        assert response.status_code == 207
        data = response.json()
        assert data['pdfUrl'] is None
        assert data['auditForm']['version'] == 1
        assert data['warning']['code'] == 'PARTIAL_COMPLETION'
        assert data['warning']['details']['failed_step'] == 'upload_pdf'

        form_id = data['auditForm']['id']
        version = await client.get(f'{API}/user/audit-form/{form_id}/version/1')
        assert version.status_code == 200
        assert (await client.get(f'{API}/user/audit-form/{form_id}')).status_code == 404

    @pytest.mark.asyncio
    async def test_server_path_image_rejected(self, client: AsyncClient, template_payload, fill_payload):
        """Test evidence images must be inline data or http(s) URLs"""
        template = await create_template(client, template_payload)
        fill_payload['sections'][0]['questions'][0]['image'] = '/etc/passwd'

        response = await client.post(f'{API}/user/audit-form/{template["id"]}', json=fill_payload)

        assert response.status_code == 422
        error = response.json()['error']
        assert error['code'] == 'MEDIA_RESOLUTION_FAILED'
        assert error['details']['location'] == 'sections[0].questions[0].image'

    @pytest.mark.asyncio
    async def test_ledger_failure_returns_207(self, client: AsyncClient, blob_store, monkeypatch,
                                              template_payload, fill_payload):
        """Test the form and PDF are kept when recording the ledger entry fails"""
        async def unavailable(self, form_id, user_id, version_number, pdf_url):
            raise DocumentStoreError("Ledger insert failed: database is locked", operation="ledger_append")

        template = await create_template(client, template_payload)
        monkeypatch.setattr(VersionLedger, 'append', unavailable)

        response = await client.post(f'{API}/user/audit-form/{template["id"]}', json=fill_payload)

        assert response.status_code == 207
        data = response.json()
        assert data['pdfUrl'] is None
        assert data['auditForm']['version'] == 1
        assert data['warning']['details']['failed_step'] == 'append_ledger'
        assert data['warning']['details']['cause']['code'] == 'DOCUMENT_STORE_ERROR'

        form_id = data['auditForm']['id']
        assert (await client.get(f'{API}/user/audit-form/{form_id}/version/1')).status_code == 200
        assert (await blob_store.get(f'Audit_Form_{form_id}_v1.pdf')).startswith(b'%PDF')


class TestFormEndpoints:
    """Editing, listing and version history"""

    @pytest.fixture
    async def form(self, client: AsyncClient, template_payload, fill_payload) -> dict:
        template = await create_template(client, template_payload)
        return (await fill(client, template['id'], fill_payload))['auditForm']

    @pytest.mark.asyncio
    async def test_update_creates_new_version(self, client: AsyncClient, form):
        response = await client.put(f'{API}/user/audit-forms/{form["id"]}', json={'scope': 'Bakery only'})

        assert response.status_code == 200
        data = response.json()
        assert data['message'] == 'Audit form updated successfully'
        assert data['auditForm']['id'] == form['id']
        assert data['auditForm']['version'] == 2
        assert data['auditForm']['scope'] == 'Bakery only'
        assert data['auditForm']['auditType'] == form['auditType']
        assert data['pdfUrl'].endswith(f'Audit_Form_{form["id"]}_v2.pdf')

    @pytest.mark.asyncio
    async def test_concurrent_update_returns_409(self, client: AsyncClient, monkeypatch, form):
        """Test an update that loses the race to another writer is rejected"""
        original_update = AuditStore.update_form

        async def racing_update(self, data, expected_version):
            # Another request commits its edit between our read and our write
            await self.db.execute(
                update(AuditDocument)
                .where(AuditDocument.id == data.id)
                .values(version=expected_version + 1)
            )
            await self.db.commit()
            return await original_update(self, data, expected_version)

        monkeypatch.setattr(AuditStore, 'update_form', racing_update)

        response = await client.put(f'{API}/user/audit-forms/{form["id"]}', json={'scope': 'Bakery only'})

        assert response.status_code == 409
        error = response.json()['error']
        assert error['code'] == 'VERSION_CONFLICT'
        assert error['details'] == {'form_id': form['id'], 'expected_version': 1}

        history = await client.get(f'{API}/user/audit-form/{form["id"]}/versions')
        assert [entry['versionNumber'] for entry in history.json()] == [1]

    @pytest.mark.asyncio
    async def test_update_unknown_form(self, client: AsyncClient):
        response = await client.put(f'{API}/user/audit-forms/{uuid.uuid4()}', json={'scope': 'x'})

        assert response.status_code == 404
        assert response.json()['error']['code'] == 'AUDIT_FORM_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_versions_and_history(self, client: AsyncClient, form):
        await client.put(f'{API}/user/audit-forms/{form["id"]}', json={'scope': 'Bakery only'})

        v1 = await client.get(f'{API}/user/audit-form/{form["id"]}/version/1')
        v2 = await client.get(f'{API}/user/audit-form/{form["id"]}/version/2')
        assert v1.json()['scope'] == form['scope']
        assert v2.json()['scope'] == 'Bakery only'

        missing = await client.get(f'{API}/user/audit-form/{form["id"]}/version/9')
        assert missing.status_code == 404
        assert missing.json()['error']['code'] == 'FORM_VERSION_NOT_FOUND'

        history = await client.get(f'{API}/user/audit-form/{form["id"]}/versions')
        assert [e['versionNumber'] for e in history.json()] == [2, 1]

        latest = await client.get(f'{API}/user/audit-form/{form["id"]}')
        assert latest.json()['versionNumber'] == 2

    @pytest.mark.asyncio
    async def test_list_user_forms(self, client: AsyncClient, form):
        await client.put(f'{API}/user/audit-forms/{form["id"]}', json={'scope': 'Bakery only'})

        response = await client.get(f'{API}/user/user-audit-forms/{form["userId"]}',
                                    params={'status': 'FILLED', 'sort': 'desc'})

        assert response.status_code == 200
        assert [f['version'] for f in response.json()] == [2]

    @pytest.mark.asyncio
    async def test_list_user_forms_bad_status(self, client: AsyncClient, form):
        response = await client.get(f'{API}/user/user-audit-forms/{form["userId"]}',
                                    params={'status': 'ARCHIVED'})

        assert response.status_code == 422
        assert response.json()['error']['details']['field'] == 'status'

    @pytest.mark.asyncio
    async def test_user_can_read_template(self, client: AsyncClient, template_payload):
        template = await create_template(client, template_payload)

        response = await client.get(f'{API}/user/audit-template/{template["id"]}')
        assert response.json()['restaurantName'] == template_payload['restaurantName']

    @pytest.mark.asyncio
    async def test_delete_form_keeps_ledger(self, client: AsyncClient, form):
        response = await client.delete(f'{API}/user/audit-form/{form["id"]}')
        assert response.json() == {'message': 'Audit form deleted successfully'}

        assert (await client.get(f'{API}/user/audit-form/{form["id"]}/version/1')).status_code == 404
        assert (await client.get(f'{API}/user/audit-form/{form["id"]}')).status_code == 200

        again = await client.delete(f'{API}/user/audit-form/{form["id"]}')
        assert again.status_code == 404


class TestReconcileEndpoint:

    @pytest.mark.asyncio
    async def test_reconcile_repairs_unpublished_form(self, client: AsyncClient, tmp_path,
                                                      template_payload, fill_payload):
        template = await create_template(client, template_payload)
        app.dependency_overrides[get_blob_store] = lambda: PdfRejectingBlobStore(tmp_path / 'rejecting',
                                                                                'http://test/media')
        partial = await client.post(f'{API}/user/audit-form/{template["id"]}', json=fill_payload)
        form_id = partial.json()['auditForm']['id']

        app.dependency_overrides[get_blob_store] = lambda: LocalBlobStore(tmp_path / 'working',
                                                                         'http://test/media')
        response = await client.post(f'{API}/admin/audit-forms/reconcile', params={'minAgeSeconds': 0})

        assert response.status_code == 200
        data = response.json()
        assert data['checked'] == 1
        assert data['repaired'][0]['formId'] == form_id
        assert (await client.get(f'{API}/user/audit-form/{form_id}')).json()['versionNumber'] == 1

    @pytest.mark.asyncio
    async def test_reconcile_limit_validated(self, client: AsyncClient):
        response = await client.post(f'{API}/admin/audit-forms/reconcile', params={'limit': 0})
        assert response.status_code == 422


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_root_health(self, client: AsyncClient):
        response = await client.get('/health')
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient):
        response = await client.get(f'{API}/health/live')
        assert response.json()['status'] == 'alive'

    @pytest.mark.asyncio
    async def test_readiness(self, client: AsyncClient):
        response = await client.get(f'{API}/health/ready')

        assert response.status_code == 200
        assert response.json()['checks']['blob_store']['status'] == 'healthy'
