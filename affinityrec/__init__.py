"""AffinityRec: personalized recommendations for an AI image catalog.

This package provides a backend service that ranks catalog items for a user
with a hybrid multi-strategy recommender and learns the user's affinities
from interaction feedback.

Modules:
    api: FastAPI application and REST API endpoints
    recommender: Profiles, behavior learning, scoring strategies and the
        personalization engine
"""

__version__ = "0.1.0"
