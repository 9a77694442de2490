# /flowcore/utils/metrics.py

from prometheus_client import Counter, Histogram

# Prometheus metrics for the orchestration core, kept in one place.

# Model invocation
ai_requests_counter = Counter('ai_requests_total', 'Total model invocations', ['model', 'status'])
ai_retries_counter = Counter('ai_request_retries_total', 'Model invocation retries', ['model'])

# Flow execution
flow_steps_counter = Counter('flow_steps_total', 'Flow steps processed', ['command', 'status'])
flow_results_counter = Counter('flow_results_total', 'Flow executions by outcome', ['reason'])

# Retrieval
retrieval_searches_counter = Counter('retrieval_searches_total', 'Two-stage retrieval searches', ['outcome'])

# Sessions
session_store_operations = Counter('session_store_operations_total', 'Session store operations', ['operation', 'status'])

# HTTP
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
