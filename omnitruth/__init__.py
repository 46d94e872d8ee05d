"""
OmniTruth Feed API.

Backend for a social news feed in which every post carries an AI-derived
trust score and verdict alongside a community consensus score.

The service allows users to:
- Read the feed filtered by verdict and sorted by recency, trust or consensus
- Vote posts REAL / FAKE / UNSURE, weighted by their credibility
- Request a deep AI verification of a post, or of any text
- Search the web for posts on a topic
"""

__version__ = "0.1.0"
