"""Downloader module: bounded scheduler and resumable transfers."""

from .scheduler import DownloadScheduler
from .transfer import DownloadResult, ResumableTransfer, partial_path
from .transport import HttpxTransport, TransferResponse, TransportBase, range_headers

__all__ = [
    'DownloadScheduler',
    'DownloadResult',
    'ResumableTransfer',
    'partial_path',
    'HttpxTransport',
    'TransferResponse',
    'TransportBase',
    'range_headers',
]
