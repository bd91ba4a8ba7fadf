"""Bundle composition: encoder calldata per leg and the bundle descriptor."""

from dexbundler.compose.composer import CalldataComposer, ComposedBundle, min_output
from dexbundler.compose.encoders import EncodingError, decode_encoder_call, encode_leg

__all__ = [
    "CalldataComposer",
    "ComposedBundle",
    "min_output",
    "EncodingError",
    "encode_leg",
    "decode_encoder_call",
]
