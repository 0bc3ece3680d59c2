"""
HACCP Audit Service - Test Configuration and Fixtures
"""
import os
import base64
import tempfile
from io import BytesIO
from pathlib import Path
from typing import AsyncGenerator
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from faker import Faker
from PIL import Image as PILImage

# Set testing environment before the app reads its settings
TEST_DIR = Path(tempfile.mkdtemp(prefix="haccp-audit-tests-"))
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DIR / 'test.db'}"

os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = TEST_DATABASE_URL
os.environ['STORAGE_MODE'] = 'local'
os.environ['LOCAL_STORAGE_PATH'] = str(TEST_DIR / 'storage')
os.environ['PUBLIC_BASE_URL'] = 'http://test'
os.environ['LOG_FILE'] = str(TEST_DIR / 'logs' / 'app.log')
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing'
os.environ['AUTH_REQUIRED'] = 'false'
os.environ['PDF_LOGO_PATH'] = ''

from haccp_audit.main import app
from haccp_audit.core.database import Base, get_db
from haccp_audit.services.audit_pipeline import AuditPipeline
from haccp_audit.services.blob_store import LocalBlobStore, get_blob_store

fake = Faker()

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False
)


@pytest.fixture(scope='function')
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test"""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    """Local blob store in a per-test directory"""
    return LocalBlobStore(tmp_path / 'blobs', 'http://test/media')


@pytest.fixture
async def client(db_session: AsyncSession, blob_store: LocalBlobStore) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database and blob store overrides"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def pipeline(db_session: AsyncSession, blob_store: LocalBlobStore) -> AuditPipeline:
    return AuditPipeline(db_session, blob_store)


def _make_image(width: int = 40, height: int = 30, color: str = 'red', fmt: str = 'PNG') -> bytes:
    buffer = BytesIO()
    PILImage.new('RGB', (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def _data_uri(data: bytes, mime: str = 'image/png') -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


@pytest.fixture
def make_image():
    """Factory for small encoded test images"""
    return _make_image


@pytest.fixture
def to_data_uri():
    return _data_uri


@pytest.fixture
def png_bytes() -> bytes:
    return _make_image()


@pytest.fixture
def template_payload() -> dict:
    """Admin template body in the camelCase wire format"""
    return {
        'restaurantName': fake.company(),
        'nameOfCompany': fake.company(),
        'fssaiLicenseNo': fake.numerify('##############'),
        'companyRepresentatives': [fake.name()],
        'siteAddress': fake.address(),
        'state': fake.state(),
        'pinCode': fake.postcode(),
        'phoneNo': fake.phone_number(),
        'email': fake.email(),
        'website': fake.url(),
        'auditTeam': [fake.name(), fake.name()],
        'sections': [
            {
                'sectionTitle': 'Storage',
                'questions': [
                    {'question': 'Raw and cooked food stored separately?', 'compliance': None,
                     'evidenceAndComments': ''},
                    {'question': 'Cold room below 5 degrees C?', 'compliance': None,
                     'evidenceAndComments': ''},
                ],
            },
        ],
    }


@pytest.fixture
def fill_payload() -> dict:
    """Auditor fill body; organisation fields are left to the template"""
    return {
        'userId': fake.uuid4(),
        'dateOfAudit': '2024-05-01T00:00:00.000Z',
        'auditType': 'Annual audit',
        'auditCriteria': 'FSSAI Schedule 4',
        'typeOfAudit': 'Announced',
        'scope': 'Kitchen and storage',
        'manpower': {'male': 4, 'female': 3},
        'sections': [
            {
                'sectionTitle': 'Storage',
                'questions': [
                    {'question': 'Raw and cooked food stored separately?', 'compliance': 'Y',
                     'evidenceAndComments': 'Separate shelves labelled'},
                    {'question': 'Cold room below 5 degrees C?', 'compliance': 'NI',
                     'evidenceAndComments': 'Logged at 6 degrees C during visit'},
                ],
            },
        ],
    }
