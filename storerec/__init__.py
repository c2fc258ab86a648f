"""StoreRec: product recommendation core for an e-commerce backend.

This package scores products for shoppers with collaborative, content-based,
trending and hybrid strategies, and caches each result for 24 hours per
user and algorithm.

Modules:
    api: FastAPI application and REST API endpoints
    recommender: Scoring engine, recommendation cache and service façade
    config: Runtime settings
    exceptions: Error taxonomy shared by the engine and the API
    jobs: Periodic maintenance of the recommendation cache
"""

__version__ = "0.1.0"
