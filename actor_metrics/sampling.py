"""
actor_metrics/sampling.py — 采样策略

降低高吞吐场景下逐消息指标的开销。
只作用于消息处理指标；生命周期与 mailbox 指标带有 gauge，
增减必须配对，因此从不采样。
"""
import random
import threading
import time
from abc import ABC, abstractmethod

from .config import SamplingConfig
from .exceptions import ConfigurationError


class SamplingStrategy(ABC):
    """采样策略抽象基类"""

    @abstractmethod
    def should_sample(self) -> bool:
        ...

    @staticmethod
    def from_config(config: SamplingConfig) -> "SamplingStrategy":
        if config.strategy == "always":
            return AlwaysSample()
        if config.strategy == "never":
            return NeverSample()
        if config.strategy == "rate-based":
            return RateBasedSample(config.rate)
        if config.strategy == "adaptive":
            return AdaptiveSample(
                target_throughput=config.target_throughput,
                min_rate=config.min_rate,
                max_rate=config.max_rate,
            )
        raise ConfigurationError(f"未知的采样策略: {config.strategy}")


class AlwaysSample(SamplingStrategy):
    def should_sample(self) -> bool:
        return True


class NeverSample(SamplingStrategy):
    def should_sample(self) -> bool:
        return False


class RateBasedSample(SamplingStrategy):
    """固定比例采样"""

    def __init__(self, rate: float):
        if not 0.0 <= rate <= 1.0:
            raise ConfigurationError(f"采样率必须在 [0.0, 1.0] 之间，实际为 {rate}")
        self.rate = rate

    def should_sample(self) -> bool:
        if self.rate >= 1.0:
            return True
        if self.rate <= 0.0:
            return False
        return random.random() < self.rate


class AdaptiveSample(SamplingStrategy):
    """
    自适应采样

    每秒根据实际采样吞吐调整采样率:
      - 超过目标 10% → 采样率 × 0.9（不低于 min_rate）
      - 低于目标 10% → 采样率 × 1.1（不高于 max_rate）
    """

    ADJUSTMENT_INTERVAL_S = 1.0

    def __init__(self, target_throughput: int, min_rate: float, max_rate: float):
        if not 0.0 <= min_rate <= max_rate <= 1.0:
            raise ConfigurationError(
                f"需要 0 <= min_rate <= max_rate <= 1，实际为 {min_rate}, {max_rate}"
            )
        self.target_throughput = target_throughput
        self.min_rate = min_rate
        self.max_rate = max_rate
        self.current_rate = max_rate

        self._samples = 0
        self._total = 0
        self._last_adjustment = time.monotonic()
        # 只保护调整过程，非阻塞获取；拿不到锁就跳过本次调整
        self._adjust_lock = threading.Lock()

    def should_sample(self) -> bool:
        self._total += 1
        self._adjust_if_needed()

        rate = self.current_rate
        if rate >= 1.0:
            sample = True
        elif rate <= 0.0:
            sample = False
        else:
            sample = random.random() < rate
        if sample:
            self._samples += 1
        return sample

    def _adjust_if_needed(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_adjustment
        if elapsed < self.ADJUSTMENT_INTERVAL_S:
            return
        if not self._adjust_lock.acquire(blocking=False):
            return
        try:
            if now - self._last_adjustment < self.ADJUSTMENT_INTERVAL_S:
                return
            samples, total = self._samples, self._total
            self._samples = 0
            self._total = 0
            self._last_adjustment = now
            if total == 0:
                return

            throughput = samples / elapsed
            if throughput > self.target_throughput * 1.1:
                self.current_rate = max(self.min_rate, self.current_rate * 0.9)
            elif throughput < self.target_throughput * 0.9:
                self.current_rate = min(self.max_rate, self.current_rate * 1.1)
        finally:
            self._adjust_lock.release()
