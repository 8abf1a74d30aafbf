# quantix/monitoring.py
import time
import socket
import threading
import logging
from socketserver import ThreadingMixIn
from wsgiref.simple_server import make_server, WSGIServer

import psutil
from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from prometheus_client.exposition import make_wsgi_app

logger = logging.getLogger(__name__)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """A WSGI server that serves each request in its own thread."""
    allow_reuse_address = True
    daemon_threads = True


class Monitor:
    def __init__(self, manager, host="127.0.0.1", port=9090):
        self.manager = manager
        self.host = host
        self.port = port
        self.server = None
        self.thread = None

        # Isolated registry so several monitors can coexist in one process
        self.registry = CollectorRegistry()

        self.op_counter = Counter('quantix_operations_total', 'Operations processed', ['operation', 'status'], registry=self.registry)
        self.op_latency = Histogram('quantix_operation_latency_seconds', 'Time to process an operation', registry=self.registry)
        self.event_counter = Counter('quantix_events_total', 'Manager events emitted', ['event'], registry=self.registry)
        self.breaker_trips = Counter('quantix_circuit_breaker_trips_total', 'Circuit breaker trips', ['symbol', 'reason'], registry=self.registry)
        self.liquidations = Counter('quantix_liquidations_total', 'Vaults liquidated', ['symbol'], registry=self.registry)
        self.halted = Gauge('quantix_halted', '1 while the system is halted', registry=self.registry)
        self.block_height = Gauge('quantix_block_height', 'Current settlement block', registry=self.registry)
        self.cpu_usage = Gauge('system_cpu_percent', 'Current CPU usage percent', registry=self.registry)
        self.memory_usage = Gauge('system_memory_percent', 'Current memory usage percent', registry=self.registry)

        manager.subscribe(self.record_event)

    def start_server(self, max_retries: int = 5, retry_delay: float = 2):
        """Serve the registry over HTTP from a background thread."""
        app = make_wsgi_app(self.registry)

        for attempt in range(max_retries):
            try:
                self.server = make_server(self.host, self.port, app, ThreadingWSGIServer)
                self.server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                self.thread = threading.Thread(target=self.server.serve_forever)
                self.thread.daemon = True
                self.thread.start()
                logger.info(f"Prometheus server started on http://{self.host}:{self.port}")
                return
            except OSError as e:
                if e.errno == 98 and attempt < max_retries - 1:  # Address already in use
                    logger.warning(f"Port {self.port} in use, retrying in {retry_delay}s (attempt {attempt+1}/{max_retries})...")
                    time.sleep(retry_delay)
                else:
                    logger.error(f"Failed to bind metrics server to port {self.port}: {e}")
                    raise

    def stop_server(self):
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            logger.info("Prometheus server stopped.")

    def update(self):
        self.block_height.set(self.manager.block_number)
        self.halted.set(1 if self.manager.is_paused() else 0)
        self.cpu_usage.set(psutil.cpu_percent())
        self.memory_usage.set(psutil.virtual_memory().percent)

    def record_tx(self, operation: str, status: str, latency: float):
        self.op_counter.labels(operation=operation, status=status).inc()
        self.op_latency.observe(latency)

    def record_event(self, event):
        self.event_counter.labels(event=event.name).inc()
        if event.name == 'CircuitBreakerTriggered':
            self.breaker_trips.labels(symbol=event['symbol'], reason=event['reason']).inc()
            self.halted.set(1)
        elif event.name == 'VaultLiquidated':
            self.liquidations.labels(symbol=event['symbol']).inc()
        elif event.name == 'Paused':
            self.halted.set(1)
        elif event.name == 'Unpaused':
            self.halted.set(0)
