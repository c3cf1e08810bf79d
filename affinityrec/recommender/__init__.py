"""Recommendation core for AffinityRec.

This module contains the user profile model, the behavior learner, the five
scoring strategies, the combiner that merges their output, and the
personalization engine that wires them to the catalog and affinity store.
"""
