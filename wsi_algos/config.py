from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

@dataclass(frozen=True)
class ViewerConfig:
    tile_size: int = 1024
    padding: int = 1000
    cache_max_tiles: int = 4096
    zoom_factor_step: float = 1.35
    min_scale_l0: float = 0.001
    max_scale_l0: float = 50.0
    cleanup_delay_ms: int = 10
    use_opengl_viewport: bool = True

    # 영역 선택/오버레이
    selection_pen_width: int = 2
    point_pixel_radius: int = 4

@dataclass(frozen=True)
class ServerConfig:
    # 알고리즘 서버 설정
    default_url: str = "http://localhost:8000"
    dialect: str = "auto"  # "auto" | "simple" | "stateful" | "serverkit"
    liveness_path: str = "/"
    request_timeout: Optional[float] = None  # None = requests 기본값 (무제한)

    # 결과 수신 후 서버에 남은 이미지 삭제 (stateful dialect)
    delete_remote_image: bool = True

@dataclass(frozen=True)
class RunConfig:
    # 동시에 실행 가능한 알고리즘 작업 수
    max_concurrent_runs: int = 1

    # 서버로 보내는 영역 이미지 포맷
    image_format: str = "TIFF"

@dataclass(frozen=True)
class AppConfig:
    viewer: ViewerConfig = field(default_factory=ViewerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    run: RunConfig = field(default_factory=RunConfig)

CONFIG = AppConfig()
