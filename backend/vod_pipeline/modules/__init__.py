"""Application modules.

This package contains the feature modules of the packaging worker:
- transcoding: HLS packaging pipeline
- job: Job queue and worker pool
- video: Video record updates
"""
