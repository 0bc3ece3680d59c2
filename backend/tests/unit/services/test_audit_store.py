"""
Unit Tests for Audit Store and Version Ledger
Tests for: template CRUD, form snapshots, compare-and-set updates, user
listings, unrendered snapshot lookup, ledger append/history
"""
import pytest

from haccp_audit.core.exceptions import VersionConflictError
from haccp_audit.core.types import generate_uuid
from haccp_audit.models.audit_document import AuditStatus
from haccp_audit.schemas.audit import AuditDocumentData, TemplateCreate, TemplateUpdate
from haccp_audit.services.audit_store import AuditStore
from haccp_audit.services.version_ledger import VersionLedger


def form_data(user_id="auditor-1", version=1, **overrides) -> AuditDocumentData:
    return AuditDocumentData(
        id=overrides.pop("id", generate_uuid()),
        user_id=user_id,
        restaurant_name="Cafe X",
        status=AuditStatus.FILLED,
        version=version,
        **overrides,
    )


class TestTemplates:
    """Test template persistence"""

    @pytest.mark.asyncio
    async def test_create_template(self, db_session, template_payload):
        template = await AuditStore(db_session).create_template(TemplateCreate.model_validate(template_payload))

        assert template.id
        assert template.status == AuditStatus.NOT_FILLED
        assert template.version == 0
        assert template.user_id == ""
        assert template.sections[0]["sectionTitle"] == "Storage"

    @pytest.mark.asyncio
    async def test_list_templates_excludes_forms(self, db_session, template_payload):
        store = AuditStore(db_session)
        template = await store.create_template(TemplateCreate.model_validate(template_payload))
        await store.insert_form(form_data())

        templates = await store.list_templates()
        assert [t.id for t in templates] == [template.id]

    @pytest.mark.asyncio
    async def test_update_template_keeps_version(self, db_session, template_payload):
        store = AuditStore(db_session)
        template = await store.create_template(TemplateCreate.model_validate(template_payload))

        updated = await store.update_template(template, TemplateUpdate(restaurant_name="Cafe Y"))

        assert updated.restaurant_name == "Cafe Y"
        assert updated.version == 0
        assert len(updated.sections) == 1

    @pytest.mark.asyncio
    async def test_delete_document(self, db_session, template_payload):
        store = AuditStore(db_session)
        template = await store.create_template(TemplateCreate.model_validate(template_payload))

        await store.delete_document(template)
        assert await store.get_document(template.id) is None


class TestForms:
    """Test form writes and snapshots"""

    @pytest.mark.asyncio
    async def test_insert_writes_snapshot(self, db_session):
        store = AuditStore(db_session)
        data = form_data()

        form = await store.insert_form(data)
        snapshot = await store.get_snapshot(form.id, 1)

        assert form.version == 1
        assert snapshot.payload["restaurantName"] == "Cafe X"
        assert snapshot.user_id == "auditor-1"

    @pytest.mark.asyncio
    async def test_compare_and_set_update(self, db_session):
        store = AuditStore(db_session)
        data = form_data()
        await store.insert_form(data)

        updated = await store.update_form(
            data.model_copy(update={"version": 2, "scope": "Bakery"}), expected_version=1
        )

        assert updated.version == 2
        assert updated.scope == "Bakery"
        assert await store.highest_snapshot_version(data.id) == 2
        # The older snapshot is untouched
        assert (await store.get_snapshot(data.id, 1)).payload["scope"] == ""

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, db_session):
        """Test an update based on an old version is rejected"""
        store = AuditStore(db_session)
        data = form_data()
        await store.insert_form(data)
        await store.update_form(data.model_copy(update={"version": 2}), expected_version=1)

        with pytest.raises(VersionConflictError):
            await store.update_form(data.model_copy(update={"version": 2, "scope": "late"}), expected_version=1)

        form = await store.get_document(data.id)
        assert form.version == 2
        assert form.scope == ""

    @pytest.mark.asyncio
    async def test_delete_form_removes_snapshots(self, db_session):
        store = AuditStore(db_session)
        data = form_data()
        form = await store.insert_form(data)

        await store.delete_document(form)

        assert await store.get_snapshot(data.id, 1) is None
        assert await store.highest_snapshot_version(data.id) is None


class TestUserForms:
    """Test listing a user's forms"""

    @pytest.mark.asyncio
    async def test_sort_desc_puts_highest_version_first(self, db_session):
        store = AuditStore(db_session)
        await store.insert_form(form_data(version=1))
        await store.insert_form(form_data(version=2))
        await store.insert_form(form_data(user_id="someone-else", version=5))

        forms = await store.list_user_forms("auditor-1", status=AuditStatus.FILLED, sort="desc")
        assert [f.version for f in forms] == [2, 1]

        forms = await store.list_user_forms("auditor-1", sort="asc")
        assert [f.version for f in forms] == [1, 2]

    @pytest.mark.asyncio
    async def test_status_filter(self, db_session):
        store = AuditStore(db_session)
        await store.insert_form(form_data())

        assert await store.list_user_forms("auditor-1", status=AuditStatus.NOT_FILLED) == []


class TestUnrenderedSnapshots:
    """Test lookup of versions that never reached the ledger"""

    @pytest.mark.asyncio
    async def test_only_versions_without_ledger_entry(self, db_session):
        store = AuditStore(db_session)
        ledger = VersionLedger(db_session)
        rendered = form_data()
        pending = form_data()
        await store.insert_form(rendered)
        await store.insert_form(pending)
        await ledger.append(rendered.id, rendered.user_id, 1, "http://test/media/a.pdf")

        snapshots = await store.find_unrendered_snapshots(limit=10, min_age_seconds=0)
        assert [(s.form_id, s.version) for s in snapshots] == [(pending.id, 1)]

    @pytest.mark.asyncio
    async def test_recent_snapshots_skipped(self, db_session):
        store = AuditStore(db_session)
        await store.insert_form(form_data())

        assert await store.find_unrendered_snapshots(limit=10, min_age_seconds=3600) == []


class TestVersionLedger:
    """Test the append-only ledger"""

    @pytest.mark.asyncio
    async def test_append_and_latest(self, db_session):
        ledger = VersionLedger(db_session)
        await ledger.append("form-1", "auditor-1", 1, "http://test/media/v1.pdf")
        await ledger.append("form-1", "auditor-1", 2, "http://test/media/v2.pdf")

        latest = await ledger.latest("form-1")
        assert latest.version_number == 2
        assert latest.pdf_url.endswith("v2.pdf")
        assert [e.version_number for e in await ledger.history("form-1")] == [2, 1]
        assert await ledger.highest_version("form-1") == 2

    @pytest.mark.asyncio
    async def test_duplicate_append_returns_existing(self, db_session):
        """Test appending the same version twice keeps the first entry"""
        ledger = VersionLedger(db_session)
        first = await ledger.append("form-1", "auditor-1", 1, "http://test/media/first.pdf")
        second = await ledger.append("form-1", "auditor-1", 1, "http://test/media/second.pdf")

        assert second.id == first.id
        assert second.pdf_url.endswith("first.pdf")
        assert len(await ledger.history("form-1")) == 1

    @pytest.mark.asyncio
    async def test_unknown_form(self, db_session):
        ledger = VersionLedger(db_session)

        assert await ledger.latest("missing") is None
        assert await ledger.history("missing") == []
        assert await ledger.highest_version("missing") is None
