from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

# Sync Metrics
SYNC_JOBS = Counter(
    "sync_jobs_total",
    "Total number of sync jobs that reached a terminal status",
    ["source_type", "status"]
)

SYNC_LATENCY = Histogram(
    "sync_duration_seconds",
    "Sync job duration in seconds",
    ["source_type"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 3600.0]
)

# Ingestion Metrics
INGESTION_FILES = Counter(
    "ingestion_files_total",
    "Total number of files seen by the ingestion pipeline",
    ["source_type", "status"]
)

INGESTION_LATENCY = Histogram(
    "ingestion_latency_seconds",
    "Ingestion pipeline latency in seconds",
    ["source_type"]
)

EMBEDDING_REQUESTS = Counter(
    "embedding_requests_total",
    "Total number of embedding backend calls",
    ["backend", "status"]
)

EMBEDDING_TOKENS = Counter(
    "embedding_tokens_total",
    "Total number of tokens sent to the embedding backend",
    ["backend"]
)

# Retrieval Metrics
RETRIEVAL_REQUESTS = Counter(
    "retrieval_requests_total",
    "Total number of retrieval requests",
    ["endpoint", "status"]
)

RETRIEVAL_LATENCY = Histogram(
    "retrieval_latency_seconds",
    "Retrieval request latency in seconds",
    ["endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0]
)

RATE_LIMITED = Counter(
    "rate_limited_requests_total",
    "Total number of requests rejected by a rate limit bucket",
    ["bucket"]
)

CACHE_HITS = Counter(
    "quota_cache_hits_total",
    "Total number of quota cache hits",
    ["cache"]
)

CACHE_MISSES = Counter(
    "quota_cache_misses_total",
    "Total number of quota cache misses",
    ["cache"]
)


def get_metrics():
    """Return latest metrics in Prometheus format."""
    return generate_latest(), CONTENT_TYPE_LATEST
