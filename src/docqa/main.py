from fastapi import FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
import logging
import time
from typing import List, Optional
from datetime import datetime

from .config import RAGConfig, DEFAULT_APOLOGY
from .errors import (
    CrossWorkspaceLeak,
    DocumentNotFound,
    EmbeddingFailed,
    EmbeddingTimeout,
    ExtractionEmpty,
    GenerationTimeout,
    IndexWriteFailed,
    QueryTimeout,
    RAGError,
    UnsupportedDocumentType,
)
from .pipeline import RAGPipeline
from .services import Feedback, FeedbackStore, LocalFileStorage

# ==================== Setup ====================

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Workspace Document Q&A",
    description="Workspace-scoped document question answering with cited sources",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global instances
pipeline: Optional[RAGPipeline] = None
feedback_store = FeedbackStore()


# ==================== Pydantic Models ====================

class QueryRequest(BaseModel):
    """Request body for query endpoint."""
    text: str
    workspace_id: str
    category: Optional[str] = None


class CitationModel(BaseModel):
    file: str
    page: int
    url: Optional[str] = None


class AlertModel(BaseModel):
    title: str
    content: str
    source: str


class QueryResponse(BaseModel):
    """Response for query."""
    query: str
    answer: str
    citations: List[CitationModel]
    alerts: List[AlertModel]
    status: str
    chunks_used: int
    message_id: str
    response_time: float


class IngestResponse(BaseModel):
    """Response for ingestion."""
    document_id: str
    file_name: str
    status: str
    chunks_created: int
    chunk_count: int
    page_count: int
    url: Optional[str] = None
    timestamp: str


class IngestFolderRequest(BaseModel):
    """Request body for folder ingestion."""
    folder_path: str
    workspace_id: str
    category: Optional[str] = None


class IngestFolderResponse(BaseModel):
    """Response for folder ingestion."""
    total_documents: int
    completed: int
    failed: int
    total_chunks: int
    documents: List[dict]
    timestamp: str


class FeedbackRequest(BaseModel):
    """Thumbs up/down on an answer."""
    message_id: str
    workspace_id: str
    rating: bool
    user_id: Optional[str] = None
    comment: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for health check."""
    status: str
    embedding_backend: str
    vector_backend: str
    chunks: int
    timestamp: str


class StatsResponse(BaseModel):
    """Response for stats."""
    total_chunks: int
    config: dict
    timestamp: str


# ==================== Startup/Shutdown ====================

@app.on_event("startup")
async def startup_event():
    """Initialize pipeline on startup."""
    global pipeline

    logger.info("=" * 60)
    logger.info("Starting Workspace Document Q&A API")
    logger.info("=" * 60)

    try:
        config = RAGConfig.from_env()
        pipeline = RAGPipeline(config=config)

        if isinstance(pipeline.storage, LocalFileStorage):
            app.mount("/files", StaticFiles(directory=str(pipeline.storage.root)), name="files")

        logger.info("✓ Pipeline initialized successfully")
        logger.info(f"✓ Embedding backend: {config.embedding_backend}")
        logger.info(f"✓ Vector backend: {config.vector_backend}")
        logger.info(f"✓ Interactive docs at /docs")

    except Exception as e:
        logger.error(f"Failed to initialize pipeline: {e}")
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Workspace Document Q&A API")
    if pipeline:
        pipeline.close()


def _require_pipeline() -> RAGPipeline:
    if not pipeline:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return pipeline


# ==================== Health & Status ====================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Check system health.

    Returns:
        Health status of the embedding and vector backends
    """
    rag = _require_pipeline()

    try:
        chunks = rag.vector_store.size()
        return HealthResponse(
            status="healthy",
            embedding_backend=rag.config.embedding_backend,
            vector_backend=rag.vector_store.name,
            chunks=chunks,
            timestamp=datetime.now().isoformat()
        )

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/stats", response_model=StatsResponse)
async def get_stats(workspace_id: Optional[str] = None):
    """
    Get pipeline statistics.

    Returns:
        Chunk count (optionally for one workspace) and active settings
    """
    rag = _require_pipeline()
    stats = rag.get_stats(workspace_id)

    return StatsResponse(
        total_chunks=stats['total_chunks'],
        config=stats['config'],
        timestamp=datetime.now().isoformat()
    )


# ==================== Ingestion Endpoints ====================

@app.post("/ingest", response_model=IngestResponse)
async def ingest_document(
    file: UploadFile = File(...),
    workspace_id: str = Form(...),
    category: str = Form("General"),
    document_id: Optional[str] = Form(None),
):
    """
    Upload and ingest a single document (PDF or plain text).

    Pass ``document_id`` to re-ingest an existing document; its previous
    chunks are replaced.

    Example:
        curl -X POST "http://localhost:8000/ingest" \
          -F "file=@HR_Policy.pdf" -F "workspace_id=acme" -F "category=HR"
    """
    rag = _require_pipeline()

    contents = await file.read()
    logger.info(f"Processing upload: {file.filename} ({len(contents)} bytes) for {workspace_id}")

    result = await run_in_threadpool(
        rag.ingest_document,
        workspace_id=workspace_id,
        file_name=file.filename,
        file_bytes=contents,
        mime_type=None,
        category=category,
        document_id=document_id,
    )

    return IngestResponse(**result.to_dict(), timestamp=datetime.now().isoformat())


@app.post("/ingest-folder", response_model=IngestFolderResponse)
async def ingest_folder(request: IngestFolderRequest):
    """
    Ingest all PDFs from a server-side folder.

    Example:
        curl -X POST "http://localhost:8000/ingest-folder" \
          -H "Content-Type: application/json" \
          -d '{"folder_path": "./docs", "workspace_id": "acme"}'
    """
    rag = _require_pipeline()

    try:
        results = await run_in_threadpool(
            rag.ingest_folder, request.folder_path, request.workspace_id, request.category
        )
    except FileNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not results:
        raise HTTPException(status_code=400, detail="No PDFs found in folder")

    documents = list(results.values())
    completed = [d for d in documents if d["status"] == "Completed"]

    return IngestFolderResponse(
        total_documents=len(documents),
        completed=len(completed),
        failed=len(documents) - len(completed),
        total_chunks=sum(d["chunk_count"] for d in completed),
        documents=documents,
        timestamp=datetime.now().isoformat()
    )


# ==================== Query Endpoint ====================

@app.post("/query", response_model=QueryResponse)
async def query(request: QueryRequest):
    """
    Ask a question against one workspace's documents.

    Example:
        curl -X POST "http://localhost:8000/query" \
          -H "Content-Type: application/json" \
          -d '{"text": "What is the remote work policy?", "workspace_id": "acme", "category": "HR"}'
    """
    rag = _require_pipeline()

    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Query text is empty")

    start_time = time.time()
    result = await run_in_threadpool(rag.query, request.text, request.workspace_id, request.category)
    response_time = time.time() - start_time

    return QueryResponse(**result.to_dict(), response_time=round(response_time, 3))


# ==================== Document Management ====================

@app.get("/documents")
async def list_documents(workspace_id: str = Query(...)):
    """
    List the documents of a workspace with their ingestion status.
    """
    rag = _require_pipeline()
    documents = rag.list_documents(workspace_id)

    return {
        "workspace_id": workspace_id,
        "documents": [d.to_dict() for d in documents],
        "total": len(documents),
        "timestamp": datetime.now().isoformat()
    }


@app.delete("/documents/{document_id}")
async def delete_document(document_id: str, workspace_id: str = Query(...)):
    """
    Delete a document, all its chunks and its stored file.
    """
    rag = _require_pipeline()

    logger.info(f"Deleting document: {document_id}")
    removed = await run_in_threadpool(rag.delete_document, document_id, workspace_id)

    return {
        "status": "success",
        "document_id": document_id,
        "chunks_deleted": removed,
        "timestamp": datetime.now().isoformat()
    }


@app.post("/documents/{document_id}/retry", response_model=IngestResponse)
async def retry_document(document_id: str, workspace_id: str = Query(...)):
    """
    Re-run ingestion of a stored document, e.g. one marked Failed.
    """
    rag = _require_pipeline()

    logger.info(f"Retrying document: {document_id}")
    result = await run_in_threadpool(rag.retry, document_id, workspace_id)

    return IngestResponse(**result.to_dict(), timestamp=datetime.now().isoformat())


# ==================== Feedback ====================

@app.post("/feedback")
async def submit_feedback(request: FeedbackRequest):
    """Record a thumbs up/down on an answer."""
    feedback = feedback_store.save(Feedback(
        message_id=request.message_id,
        workspace_id=request.workspace_id,
        rating=request.rating,
        user_id=request.user_id,
        comment=request.comment,
    ))
    return {"status": "success", "feedback": feedback.to_dict()}


@app.get("/feedback/stats")
async def feedback_stats(workspace_id: Optional[str] = None):
    """Positive/negative counts and satisfaction percentage."""
    return feedback_store.stats(workspace_id)


# ==================== Error Handlers ====================

def status_code_for(exc: RAGError) -> int:
    """HTTP status for a pipeline error."""
    if isinstance(exc, DocumentNotFound):
        return 404
    if isinstance(exc, UnsupportedDocumentType):
        return 415
    if isinstance(exc, ExtractionEmpty):
        return 422
    if isinstance(exc, (EmbeddingTimeout, GenerationTimeout, QueryTimeout)):
        return 504
    if isinstance(exc, IndexWriteFailed):
        return 503
    # embedding, search and generation failures are upstream errors
    return 502


@app.exception_handler(RAGError)
async def rag_exception_handler(request, exc: RAGError):
    """
    Map pipeline errors to JSON.

    Query failures get the fixed apology message plus the original query;
    ingestion failures report the (now Failed) document id.
    """
    status_code = status_code_for(exc)
    content = {
        "status": "error",
        "error_type": type(exc).__name__,
        "timestamp": datetime.now().isoformat()
    }

    if exc.query:
        logger.error(f"Query failed ({type(exc).__name__}): {exc}")
        content["error"] = pipeline.config.apology_message if pipeline else DEFAULT_APOLOGY
        content["query"] = exc.query
    else:
        logger.error(f"Request failed ({type(exc).__name__}): {exc}")
        content["error"] = exc.message
        content["document_id"] = exc.document_id
        if isinstance(exc, EmbeddingFailed) and exc.failed_chunks:
            content["failed_chunks"] = exc.failed_chunks

    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    """Handle invalid arguments."""
    return JSONResponse(
        status_code=400,
        content={
            "error": str(exc),
            "status": "error",
            "timestamp": datetime.now().isoformat()
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status": "error",
            "timestamp": datetime.now().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions."""
    if isinstance(exc, CrossWorkspaceLeak):
        logger.critical(f"Workspace isolation violated: {exc}")
    else:
        logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "status": "error",
            "timestamp": datetime.now().isoformat()
        }
    )


# ==================== Run ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docqa.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
