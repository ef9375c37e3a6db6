"""
Torch backend: the stages as tensor kernels on a chosen device

On CUDA every stage is followed by a device synchronise, the blocking join
point between stages. On the CPU device the results match NumpyComputer
within float tolerance.
"""

import logging
from typing import Optional, Tuple, Union

import numpy as np
import torch
import torch.nn.functional as F

from .computer import ResponseComputer, block_grid, interpolate_unobserved, MERGE_EPSILON
from .settings import RESPONSE_LENGTH

logger = logging.getLogger(__name__)


class TorchComputer(ResponseComputer):
    """Stages on a torch device (CUDA when available)

    Args:
        device: torch device or name; defaults to cuda if available, else cpu
        block_size: tile edge for block partial sums
        shared_memory_bytes: fast-memory budget for replicated histograms
    """

    name = "torch"
    allocation_errors = (MemoryError, torch.cuda.OutOfMemoryError)

    def __init__(self, device: Optional[Union[str, torch.device]] = None,
                 block_size: int = 16, shared_memory_bytes: int = 32768):
        super().__init__(block_size=block_size, shared_memory_bytes=shared_memory_bytes)
        if device is None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = torch.device(device)
        self.channels = torch.arange(3, device=self.device)
        logger.info(f"Torch compute backend on {self.device}")

    def synchronize(self) -> None:
        if self.device.type == "cuda":
            torch.cuda.synchronize(self.device)

    def _table(self, values: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(np.asarray(values, dtype=np.float64), device=self.device)

    def load_bracket(self, stack: np.ndarray, camera_shifts: np.ndarray) -> torch.Tensor:
        images = torch.from_numpy(np.array(stack, dtype=np.uint8)).to(self.device)
        count, height, width = images.shape[:3]
        shifted = []
        for i in range(count):
            dx, dy = int(camera_shifts[i][0]), int(camera_shifts[i][1])
            if dx == 0 and dy == 0:
                shifted.append(images[i])
                continue
            ys = torch.clamp(torch.arange(height, device=self.device) + dy, 0, height - 1)
            xs = torch.clamp(torch.arange(width, device=self.device) + dx, 0, width - 1)
            shifted.append(images[i][ys][:, xs])
        return torch.stack(shifted, dim=0)

    def _estimate_radiance(self, bins: torch.Tensor, times: torch.Tensor,
                           f: torch.Tensor, w: torch.Tensor, fallback: bool = True) -> torch.Tensor:
        t = times.view(-1, 1, 1, 1)
        wz = w[bins, self.channels]
        numerator = torch.sum(wz * f[bins, self.channels] / t, dim=0)
        denominator = torch.sum(wz, dim=0)

        valid = denominator > MERGE_EPSILON
        radiance = numerator / torch.where(valid, denominator, torch.ones_like(denominator))
        if bool(valid.all()):
            return radiance
        if not fallback:
            return torch.where(valid, radiance, torch.zeros_like(radiance))

        shortest = int(torch.argmin(times))
        longest = int(torch.argmax(times))
        bright = bins.double().mean(dim=0) > 127.5
        best = torch.where(bright,
                           f[bins[shortest], self.channels] / times[shortest],
                           f[bins[longest], self.channels] / times[longest])
        logger.warning(f"{int((~valid).sum())} samples carry zero weight in every exposure, using fallback")
        return torch.where(valid, radiance, best)

    def count_cardinality(self, images: torch.Tensor) -> np.ndarray:
        replicas = self.replication_factor
        bins = images.long()
        pixel_count = bins.shape[0] * bins.shape[1] * bins.shape[2]

        # Phase 1: pixel p counts into replica p % R
        replica = (torch.arange(pixel_count, device=self.device) % replicas).view(bins.shape[:3])
        slots = (replica.unsqueeze(-1) * RESPONSE_LENGTH + bins) * 3 + self.channels
        partial = torch.bincount(slots.flatten(), minlength=replicas * RESPONSE_LENGTH * 3)

        # Phase 2: sum the replicas
        cardinality = partial.view(replicas, RESPONSE_LENGTH, 3).sum(dim=0)
        return cardinality.cpu().numpy().astype(np.int64)

    def accumulate(self, images: torch.Tensor, exposure_times: np.ndarray,
                   response: np.ndarray, weights: np.ndarray) -> torch.Tensor:
        bins = images.long()
        height, width = bins.shape[1:3]
        rows, cols = block_grid(height, width, self.block_size)
        times = self._table(exposure_times)

        w = self._table(weights)
        # Pixels with no weighted sample deposit nothing, so need no fallback
        radiance = self._estimate_radiance(bins, times, self._table(response), w, fallback=False)
        deposits = w[bins, self.channels] * radiance.unsqueeze(0) * times.view(-1, 1, 1, 1)

        ys = torch.arange(height, device=self.device) // self.block_size
        xs = torch.arange(width, device=self.device) // self.block_size
        block = ys.view(-1, 1) * cols + xs.view(1, -1)
        slots = (block.view(1, height, width, 1) * RESPONSE_LENGTH + bins) * 3 + self.channels

        sums = torch.bincount(slots.flatten(), weights=deposits.flatten(),
                              minlength=rows * cols * RESPONSE_LENGTH * 3)
        return sums.to(torch.float64).view(rows * cols, RESPONSE_LENGTH, 3)

    def reduce(self, partial_sums: torch.Tensor, cardinality: np.ndarray, response: np.ndarray) -> np.ndarray:
        totals = partial_sums.sum(dim=0).cpu().numpy()
        observed = cardinality > 0
        values = np.divide(totals, cardinality.astype(np.float64), out=np.zeros_like(totals), where=observed)
        return interpolate_unobserved(values, observed, response).astype(np.float32)

    def median_filter(self, response: np.ndarray, window: int) -> np.ndarray:
        half = window // 2
        curve = self._table(response).t().unsqueeze(0)
        padded = F.pad(curve, (half, half), mode="replicate")
        medians = padded.unfold(-1, window, 1).median(dim=-1).values
        return medians.squeeze(0).t().cpu().numpy().astype(np.float32)

    def merge(self, images: torch.Tensor, exposure_times: np.ndarray,
              response: np.ndarray, weights: np.ndarray) -> np.ndarray:
        radiance = self._estimate_radiance(images.long(), self._table(exposure_times),
                                           self._table(response), self._table(weights))
        return radiance.float().cpu().numpy()

    def min_max(self, pixels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        flat = torch.as_tensor(np.ascontiguousarray(pixels[:, :, :3], dtype=np.float32), device=self.device)
        minimum, maximum = torch.aminmax(flat.reshape(-1, 3), dim=0)
        return minimum.cpu().numpy(), maximum.cpu().numpy()

    def histogram(self, pixels: np.ndarray, minimum: np.ndarray, maximum: np.ndarray, bins: int) -> np.ndarray:
        flat = torch.as_tensor(np.ascontiguousarray(pixels[:, :, :3], dtype=np.float32), device=self.device)
        flat = flat.reshape(-1, 3)
        hist = np.zeros((bins, 3), dtype=np.int64)
        for c in range(3):
            if maximum[c] <= minimum[c]:
                hist[0, c] = flat.shape[0]
                continue
            counts = torch.histc(flat[:, c], bins=bins, min=float(minimum[c]), max=float(maximum[c]))
            hist[:, c] = counts.cpu().numpy().astype(np.int64)
        return hist
