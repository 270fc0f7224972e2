"""API route handlers for the sample sync backend."""

from samplesync.api.routes import health as health
from samplesync.api.routes import sample_sync as sample_sync
from samplesync.api.routes import samples as samples
from samplesync.api.routes import webhooks as webhooks
