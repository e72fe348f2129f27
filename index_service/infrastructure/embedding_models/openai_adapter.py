# File: index_service/infrastructure/embedding_models/openai_adapter.py
import structlog
from typing import List, Any, Optional
from openai import OpenAI, APIConnectionError, APITimeoutError, RateLimitError, AuthenticationError, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from index_service.application.ports.embedding_model_port import (
    EmbeddingModelPort,
    EmbeddingError,
    EmbeddingConnectionError,
)
from index_service.core.config import settings
from index_service.core.metrics import OPENAI_API_DURATION_SECONDS, OPENAI_API_ERRORS_TOTAL

log = structlog.get_logger(__name__)

class OpenAIAdapter(EmbeddingModelPort):
    """
    Adapter for OpenAI's Embedding API.
    """

    def __init__(self, client: Optional[Any] = None):
        self._model_name = settings.EMBEDDING_MODEL_NAME
        self._embedding_dimension = settings.EMBEDDING_DIMENSION
        self._client = client
        log.info("OpenAIAdapter initialized", model_name=self._model_name, target_dimension=self._embedding_dimension)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._embedding_dimension

    def _get_client(self) -> Any:
        if self._client is None:
            if not settings.OPENAI_API_KEY.get_secret_value():
                raise EmbeddingError("OpenAI API Key is not configured.")
            self._client = OpenAI(
                api_key=settings.OPENAI_API_KEY.get_secret_value(),
                base_url=settings.OPENAI_API_BASE,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=0
            )
        return self._client

    @retry(
        stop=stop_after_attempt(settings.OPENAI_MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((APIConnectionError, RateLimitError)),
        reraise=True,
        before_sleep=lambda retry_state: log.warning(
            "Retrying OpenAI embedding call",
            model_name=settings.EMBEDDING_MODEL_NAME,
            attempt_number=retry_state.attempt_number,
            wait_time=retry_state.next_action.sleep,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else "Unknown error"
        )
    )
    def _create_embeddings(self, texts: List[str]) -> List[List[float]]:
        client = self._get_client()
        with OPENAI_API_DURATION_SECONDS.labels(model_name=self._model_name).time():
            response = client.embeddings.create(
                model=self._model_name,
                input=texts,
                dimensions=self._embedding_dimension,
                encoding_format="float",
            )
        if not response.data or len(response.data) != len(texts):
            raise EmbeddingError("OpenAI API returned no valid embedding data.")
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        embed_log = log.bind(adapter="OpenAIAdapter", num_texts=len(texts), model=self._model_name)
        try:
            return self._create_embeddings(texts)
        except (APIConnectionError, APITimeoutError) as e:
            # APITimeoutError subclasses APIConnectionError
            embed_log.error("OpenAI API Connection Error", error=str(e))
            OPENAI_API_ERRORS_TOTAL.labels(model_name=self._model_name, error_type="connection_error").inc()
            raise EmbeddingConnectionError(f"OpenAI connection error: {e}") from e
        except AuthenticationError as e:
            embed_log.error("OpenAI API Authentication Error", error=str(e))
            OPENAI_API_ERRORS_TOTAL.labels(model_name=self._model_name, error_type="authentication_error").inc()
            raise EmbeddingError(f"OpenAI authentication failed: {e}") from e
        except RateLimitError as e:
            embed_log.error("OpenAI API Rate Limit Exceeded", error=str(e))
            OPENAI_API_ERRORS_TOTAL.labels(model_name=self._model_name, error_type="rate_limit_error").inc()
            raise EmbeddingError(f"OpenAI rate limit exceeded: {e}") from e
        except OpenAIError as e:
            error_type = type(e).__name__
            embed_log.error(f"OpenAI API Error: {error_type}", error=str(e))
            OPENAI_API_ERRORS_TOTAL.labels(model_name=self._model_name, error_type=error_type).inc()
            raise EmbeddingError(f"OpenAI API error: {e}") from e
