"""Line-delimited JSON-RPC serving for the engines.

Architecture:
- protocol.py: Request/response envelopes and error codes
- transport.py: One message per line over byte streams
- params.py: Typed params decoding per method
- dispatcher.py: Method table and error mapping
- store_methods.py / embed_methods.py: Engine method bindings
- server.py: Sequential run loop
"""

from engram.adapters.rpc.dispatcher import Dispatcher
from engram.adapters.rpc.server import EngineServer

__all__ = ["Dispatcher", "EngineServer"]
