"""Test fixtures for classroom-rag."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from classroom_rag.chat.conversations import ConversationStore  # noqa: E402
from classroom_rag.chat.engine import ChatEngine  # noqa: E402
from classroom_rag.core.config import Settings  # noqa: E402
from classroom_rag.db.sqlite import SQLiteDatabase  # noqa: E402
from classroom_rag.ingest.embeddings import EmbeddingModel  # noqa: E402
from classroom_rag.ingest.pipeline import IngestPipeline  # noqa: E402
from classroom_rag.llm.client import DeterministicStubClient  # noqa: E402
from classroom_rag.quota.ledger import QuotaLedger  # noqa: E402
from classroom_rag.retrieval.search import RetrievalService  # noqa: E402
from classroom_rag.storage.documents import DocumentRepository  # noqa: E402
from classroom_rag.storage.objects import ObjectStore  # noqa: E402
from classroom_rag.uploads.broker import TEXT_MIME, UploadBroker  # noqa: E402

PHOTOSYNTHESIS = (
    "La photosynthese permet a la plante de transformer la lumiere en energie chimique. "
    "La chlorophylle des feuilles capte la lumiere du soleil. "
    "Pendant la photosynthese la plante absorbe du dioxyde de carbone et rejette du dioxygene."
)

ATHLETICS = (
    "En athletisme la course de vitesse demande un depart rapide et une bonne frequence de foulee. "
    "Le sprint se travaille par des departs repetes et des courses courtes. "
    "La course de haies ajoute un franchissement regulier des obstacles."
)


def lesson(paragraph: str, repeat: int = 6) -> str:
    """A plain-text lesson made of one paragraph repeated with numbered headings."""
    return "\n\n".join(f"Partie {number}\n{paragraph}" for number in range(1, repeat + 1))


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("CRAG_DB_PATH", str(tmp_path / "crag.db"))
    monkeypatch.setenv("CRAG_STORAGE_ROOT", str(tmp_path / "objects"))
    monkeypatch.setenv("CRAG_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("CRAG_SIMILARITY_THRESHOLD", "0.1")
    monkeypatch.setenv("CRAG_ADMIN_SECRET", "let-me-in")
    for name in ("CRAG_CHAT_BACKEND", "CRAG_EMBEDDING_BACKEND", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    from classroom_rag.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "unit.db",
        storage_root=tmp_path / "unit-objects",
        similarity_threshold=0.1,
        admin_account_ids=["admin"],
    )


@pytest.fixture
def database(settings: Settings) -> SQLiteDatabase:
    db = SQLiteDatabase(settings.db_path)
    db.ensure_schema()
    yield db
    db.close()


@pytest.fixture
def store(settings: Settings, database: SQLiteDatabase) -> ObjectStore:
    return ObjectStore(settings.storage_root, database)


@pytest.fixture
def ledger(database: SQLiteDatabase, settings: Settings) -> QuotaLedger:
    return QuotaLedger(database, settings)


@pytest.fixture
def broker(database: SQLiteDatabase, store: ObjectStore, settings: Settings) -> UploadBroker:
    return UploadBroker(database, store, settings)


@pytest.fixture
def documents(database: SQLiteDatabase, store: ObjectStore, ledger: QuotaLedger) -> DocumentRepository:
    return DocumentRepository(database, store, ledger)


@pytest.fixture
def embedder(settings: Settings) -> EmbeddingModel:
    return EmbeddingModel(model_name=f"hashed-{settings.embedding_dim}", dim=settings.embedding_dim)


@pytest.fixture
def chat_model() -> DeterministicStubClient:
    return DeterministicStubClient()


@pytest.fixture
def pipeline(
    database: SQLiteDatabase,
    settings: Settings,
    store: ObjectStore,
    ledger: QuotaLedger,
    embedder: EmbeddingModel,
) -> IngestPipeline:
    return IngestPipeline(database, settings, store, ledger, embedder=embedder)


@pytest.fixture
def retrieval(
    database: SQLiteDatabase,
    settings: Settings,
    embedder: EmbeddingModel,
    chat_model: DeterministicStubClient,
) -> RetrievalService:
    return RetrievalService(database, settings, embedder, chat_model=chat_model)


@pytest.fixture
def engine(
    database: SQLiteDatabase,
    settings: Settings,
    ledger: QuotaLedger,
    documents: DocumentRepository,
    retrieval: RetrievalService,
    chat_model: DeterministicStubClient,
) -> ChatEngine:
    return ChatEngine(
        database,
        settings,
        ledger,
        documents,
        retrieval,
        chat_model,
        conversations=ConversationStore(database),
    )


@pytest.fixture
def upload(broker: UploadBroker, store: ObjectStore) -> Callable[..., str]:
    """Prepare an upload and write its bytes; returns the document id."""

    def _upload(
        account_id: str,
        payload: bytes,
        file_name: str = "lesson.txt",
        mime_type: str = TEXT_MIME,
        scope: str = "user",
        is_admin: bool = False,
    ) -> str:
        ticket = broker.create_upload(
            account_id,
            file_name=file_name,
            mime_type=mime_type,
            file_size=len(payload),
            scope=scope,
            is_admin=is_admin,
        )
        store.write_with_grant(ticket.upload_token, payload)
        return ticket.document_id

    return _upload


@pytest.fixture
def ready_document(upload: Callable[..., str], pipeline: IngestPipeline) -> Callable[..., str]:
    """Upload and ingest a plain-text document; returns the document id."""

    def _ready(account_id: str, text: str, file_name: str = "lesson.txt", **kwargs) -> str:
        document_id = upload(account_id, text.encode("utf-8"), file_name=file_name, **kwargs)
        pipeline.ingest(document_id, account_id, is_admin=kwargs.get("is_admin", False))
        return document_id

    return _ready


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."
