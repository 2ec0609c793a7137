bind = "127.0.0.1:8000"
# One worker: the store's change feed and compare-and-swap lock live in-process.
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
wsgi_app = "geoattend.main:app"
timeout = 60
graceful_timeout = 30
keepalive = 5
loglevel = "info"
accesslog = "-"
errorlog = "-"
