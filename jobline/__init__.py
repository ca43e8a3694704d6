"""jobline - 큐 기반 잡 프로토콜 워커 런타임"""

__version__ = "0.1.0"
