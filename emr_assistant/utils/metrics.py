"""
Metrics tracking utilities
"""
from prometheus_client import Counter, Gauge, Histogram
import structlog

logger = structlog.get_logger()

# Define metrics
chat_request_counter = Counter(
    'emr_assistant_chat_requests_total',
    'Chat requests by detected query type',
    ['query_type']
)

stream_outcome_counter = Counter(
    'emr_assistant_chat_stream_outcomes_total',
    'Finished chat streams by outcome',
    ['status']
)

retrieval_strategy_counter = Counter(
    'emr_assistant_retrieval_strategy_total',
    'Retrieval strategy that produced the knowledge excerpt',
    ['strategy']
)

knowledge_base_size = Gauge(
    'emr_assistant_knowledge_base_size_chars',
    'Size of the knowledge base document at last load'
)

first_chunk_latency = Histogram(
    'emr_assistant_llm_first_chunk_latency_seconds',
    'Time from stream start to first model output',
    buckets=[0.1, 0.5, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0]
)

link_repair_counter = Counter(
    'emr_assistant_link_repairs_total',
    'Chunks whose markdown links needed punctuation repair'
)

quick_help_counter = Counter(
    'emr_assistant_quick_help_requests_total',
    'Quick help requests by action and status',
    ['action', 'status']
)


def track_stream_outcome(status: str, chunks: int, request_id: str = ""):
    """Record how a chat stream ended"""
    stream_outcome_counter.labels(status=status).inc()
    logger.info(
        "Chat stream finished",
        request_id=request_id,
        status=status,
        chunks_streamed=chunks
    )
