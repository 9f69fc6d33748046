"""Video record module.

The videos table belongs to the CMS; this worker only reports packaging
outcomes into it.
"""
