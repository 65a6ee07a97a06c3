"""
Services module - Submission pipeline stages and backend collaborators.
"""
