"""
HyperMap indexer: ledger log ingestion and namespace projection.

Subpackages map onto the pipeline stages: `ledger` (remote calls, retry,
range fetching), `events` (normalization into typed events), `docstore`
(document store adapters), `namespace` (projection + full-name resolution)
and `indexer` (chunk scheduling and the ingestion entry point).
"""

__all__: list[str] = []
