import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import OpenAI
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from finance_copilot.agent.finance_agent import FinanceAgent
from finance_copilot.agent.tools import FinanceToolkit
from finance_copilot.api.routes import analytics, categories, categorize, query, rag, transactions, upload
from finance_copilot.core import settings
from finance_copilot.db.database import create_db_engine, create_session_factory, init_db
from finance_copilot.errors import FinanceCopilotError
from finance_copilot.logger import get_logger, setup_logging
from finance_copilot.manager import CategorizerService
from finance_copilot.services.categorization import RecategorizationPipeline
from finance_copilot.services.embeddings import EmbeddingClient
from finance_copilot.services.indexing import IndexingQueue
from finance_copilot.services.ingestion import IngestionService
from finance_copilot.services.query_safety import ScopedQueryExecutor
from finance_copilot.services.rag import RAGService
from finance_copilot.services.text_to_sql import TextToSQL
from finance_copilot.services.vector_store import VectorStore

logger = get_logger(__name__)


@dataclass
class Services:
    engine: Engine
    session_factory: sessionmaker[Session]
    service: CategorizerService
    executor: ScopedQueryExecutor
    rag: RAGService | None
    indexing: IndexingQueue
    ingestion: IngestionService
    recategorization: RecategorizationPipeline
    toolkit: FinanceToolkit
    agent: FinanceAgent | None
    text_to_sql: TextToSQL | None


def build_services(engine: Engine | None = None) -> Services:
    engine = engine or create_db_engine()
    init_db(engine)
    session_factory = create_session_factory(engine)

    service = CategorizerService(session_factory)
    executor = ScopedQueryExecutor(engine)

    api_key = os.getenv("OPENAI_API_KEY")
    client = None
    rag_service = None
    agent = None
    text_to_sql = None
    if api_key:
        client = OpenAI(api_key=api_key, base_url=os.getenv("OPENAI_BASE_URL") or None)
        rag_service = RAGService(VectorStore(session_factory, EmbeddingClient(api_key=api_key)), session_factory)
    toolkit = FinanceToolkit(session_factory, executor, service, rag_service)
    if client is not None:
        agent = FinanceAgent(toolkit, client=client)
        text_to_sql = TextToSQL(client, executor)

    indexing = IndexingQueue()
    ingestion = IngestionService(session_factory, service, rag_service, indexing)
    return Services(
        engine=engine,
        session_factory=session_factory,
        service=service,
        executor=executor,
        rag=rag_service,
        indexing=indexing,
        ingestion=ingestion,
        recategorization=RecategorizationPipeline(session_factory, service, on_change=ingestion.schedule_reindex),
        toolkit=toolkit,
        agent=agent,
        text_to_sql=text_to_sql,
    )


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(FinanceCopilotError)
    async def handle_app_error(request: Request, exc: FinanceCopilotError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("[API] %s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "details": exc.details})

    @app.exception_handler(RequestValidationError)
    async def handle_invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": str(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("[API] Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        if not os.getenv("OPENAI_API_KEY"):
            logger.info("OPENAI_API_KEY not set. AI categorization, retrieval and chat queries are disabled.")

        services = build_services()
        for name, value in vars(services).items():
            setattr(app.state, name, value)
        services.indexing.start()

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await services.indexing.stop(drain=True)
        services.engine.dispose()

    app = FastAPI(title="Finance Copilot", lifespan=lifespan)
    register_error_handlers(app)

    app.include_router(upload.router)
    app.include_router(transactions.router)
    app.include_router(categories.router)
    app.include_router(categorize.router)
    app.include_router(query.router)
    app.include_router(analytics.router)
    app.include_router(rag.router)

    return app


app = create_app()
