"""Helpers used inside extension-runtime worker processes."""
from __future__ import annotations

import logging
import multiprocessing
from typing import Any

from .channel import FrameChannel, FrameKind, decode, encode
from .errors import ChannelError, ErrorOrigin, ErrorReason, ExtensionFailure

logger = logging.getLogger(__name__)


def bootstrap(log_level: str) -> None:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)s | %(processName)s | %(name)s | %(message)s",
    )


def parent_alive() -> bool:
    parent = multiprocessing.parent_process()
    return parent is None or parent.is_alive()


def child_channel(inbound, outbound, poll_interval: float) -> FrameChannel:
    return FrameChannel(
        outbound,
        inbound,
        poll_interval=poll_interval,
        is_peer_alive=parent_alive,
    )


def receive_start(channel: FrameChannel) -> Any:
    frame = channel.receive()
    if frame.kind is not FrameKind.START:
        raise ChannelError(f"Expected a start frame, got {frame.kind.value}")
    return decode(frame.payload)


def send_failure(channel: FrameChannel, failure: ExtensionFailure) -> None:
    logger.debug("Reporting %s: %s", failure.reason.value, failure.message)
    channel.send(FrameKind.ERROR, encode(failure))


def bridge_failure(reason: ErrorReason, exc: BaseException, message: str) -> ExtensionFailure:
    return ExtensionFailure.from_exception(reason, exc, origin=ErrorOrigin.BRIDGE, message=message)


__all__ = [
    "bootstrap",
    "bridge_failure",
    "child_channel",
    "parent_alive",
    "receive_start",
    "send_failure",
]
