from .chain import ChainReader
from .farcaster import CastActionsClient, FarcasterAdapter, NeynarClient

__all__ = ["CastActionsClient", "ChainReader", "FarcasterAdapter", "NeynarClient"]
