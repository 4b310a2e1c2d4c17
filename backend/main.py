"""Main entry point for the Manifest Guru chat API."""
import logging
from typing import List, Optional
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import PORT, CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL
from errors import ChatError
from logger import setup_logging
from models.api import ChatRequest, ChatResponse, ConversationOut, ConversationListItem, ErrorResponse
from services.auth import AuthContext
from services.chat_pipeline import ChatPipeline
from services.context_assembler import ContextAssembler
from services.conversation_manager import ConversationManager
from services.embedding_model import EmbeddingModel
from services.llm_client import LLMClient
from services.retrieval_engine import RetrievalEngine
from services.vector_store import VectorStore

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Manifest Guru Chat",
    description="AI monk companion chat with retrieval-augmented generation",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
chat_pipeline: ChatPipeline = None
conversation_manager: ConversationManager = None
auth_context: AuthContext = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global chat_pipeline, conversation_manager, auth_context

    if LOG_FORMAT == "json":
        setup_logging(LOG_LEVEL)

    logger.info("Initializing Manifest Guru chat services...")

    try:
        embedding_model = EmbeddingModel()
        retrieval_engine = RetrievalEngine(VectorStore())
        logger.info("Initialized RetrievalEngine")

        conversation_manager = ConversationManager()
        auth_context = AuthContext()

        chat_pipeline = ChatPipeline(
            embedding_model=embedding_model,
            retrieval_engine=retrieval_engine,
            context_assembler=ContextAssembler(),
            llm_client=LLMClient(),
            conversation_manager=conversation_manager
        )

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Typed pipeline failures become the {error, code} envelope."""
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}",
        extra={"error_code": exc.code, "error_details": exc.details}
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    # pydantic prefixes custom validator messages
    message = message.removeprefix("Value error, ")
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error=message, code="VALIDATION_ERROR").model_dump()
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything untyped is still reported in the {error, code} envelope."""
    logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", code="INTERNAL_ERROR").model_dump()
    )


def get_owner_id(authorization: Optional[str] = Header(default=None)) -> str:
    """Dependency resolving the caller's user id."""
    return auth_context.resolve_owner(authorization)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Manifest Guru Chat API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "manifest-guru-chat",
        "version": "1.0.0"
    }


@app.post("/chat", response_model=ChatResponse, response_model_by_alias=True)
def chat_endpoint(request: ChatRequest, owner_id: str = Depends(get_owner_id)) -> ChatResponse:
    """
    Answer a chat message.

    Runs the pipeline: embed -> retrieve -> assemble -> generate -> persist.
    Runs in the threadpool so provider calls never block the event loop.

    Args:
        request: ChatRequest with message and optional conversationId
        owner_id: Authenticated caller

    Returns:
        ChatResponse with conversationId, response and timestamp
    """
    result = chat_pipeline.run(
        owner_id=owner_id,
        message=request.message,
        conversation_id=request.conversation_id
    )
    return ChatResponse(
        conversation_id=result.conversation_id,
        response=result.response,
        timestamp=result.timestamp_iso
    )


@app.get("/conversations", response_model=List[ConversationListItem])
def list_conversations_endpoint(owner_id: str = Depends(get_owner_id)):
    """List the caller's conversations, most recent first."""
    return [summary.to_record() for summary in conversation_manager.list_conversations(owner_id)]


@app.get("/conversations/{conversation_id}", response_model=ConversationOut)
def get_conversation_endpoint(conversation_id: str, owner_id: str = Depends(get_owner_id)):
    """Return one conversation with all its messages."""
    return conversation_manager.get_conversation(conversation_id, owner_id).to_record()


@app.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation_endpoint(conversation_id: str, owner_id: str = Depends(get_owner_id)):
    """Delete one of the caller's conversations."""
    conversation_manager.delete_conversation(conversation_id, owner_id)
    return Response(status_code=204)


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Manifest Guru chat API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
