"""
Configuration management for the collateral manager.
"""
import json
import os
from dataclasses import dataclass, asdict


@dataclass
class ManagerConfig:
    """Collateral manager configuration."""
    chain_id: int = 1
    twap_window: int = 10
    oracle_max_age: int = 0  # seconds; 0 disables the staleness check
    health_warning_margin: int = 5  # percentage points above the minimum ratio


@dataclass
class CircuitBreakerConfig:
    """Breaker thresholds in 18-decimal quote units; 0 disables a check."""
    max_single_withdrawal: int = 0
    max_single_mint: int = 0
    max_block_withdrawal: int = 0
    max_block_mint: int = 0
    max_price_drop: int = 0  # percent


@dataclass
class DatabaseConfig:
    """Database configuration."""
    path: str = "./quantix_data"
    write_buffer_size: int = 16 * 1024 * 1024  # 16MB
    max_open_files: int = 500


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""
    host: str = "127.0.0.1"
    port: int = 9090
    enabled: bool = False


@dataclass
class Config:
    """Main configuration."""
    manager: ManagerConfig
    circuit_breaker: CircuitBreakerConfig
    database: DatabaseConfig
    monitoring: MonitoringConfig

    @property
    def chain_id(self) -> int:
        return self.manager.chain_id

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            manager=ManagerConfig(),
            circuit_breaker=CircuitBreakerConfig(),
            database=DatabaseConfig(),
            monitoring=MonitoringConfig()
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        return cls(
            manager=ManagerConfig(**data.get('manager', {})),
            circuit_breaker=CircuitBreakerConfig(**data.get('circuit_breaker', {})),
            database=DatabaseConfig(**data.get('database', {})),
            monitoring=MonitoringConfig(**data.get('monitoring', {}))
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_file(self, path: str):
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'manager': asdict(self.manager),
            'circuit_breaker': asdict(self.circuit_breaker),
            'database': asdict(self.database),
            'monitoring': asdict(self.monitoring)
        }
