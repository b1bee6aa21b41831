"""Async functional layer operations."""

from typing import Any, Optional

from .archive import ArchiveOpener, open_tar_archive
from .core.types import RegistryConfig
from .enumerate import LayerSession
from .exceptions import LayerPeekError
from .lookup import LookupHit


async def list_layers(
    image: str, config: Optional[RegistryConfig] = None
) -> list[dict[str, Any]]:
    """이미지의 레이어 목록을 리다이렉트 해석 결과와 함께 조회합니다.

    Args:
        image: 이미지 참조 (예: "ghcr.io/org/app:v1", "nginx@sha256:...")
        config: 세션 설정 (기본값: RegistryConfig())

    Returns:
        list[dict[str, Any]]: 아래층부터 순서대로 정렬된 레이어 정보
            (index, digest, size, url, effective_url)

    Raises:
        LayerPeekError: 참조 파싱, 인증, 매니페스트 조회 또는 리다이렉트 해석 실패 시

    Examples:
        layers = await list_layers("localhost:15000/myapp:latest")
        for layer in layers:
            print(f"{layer['index']} {layer['digest']} {layer['size']:,} bytes")
    """
    async with LayerSession(image, config) as session:
        return [
            {
                "index": index,
                "digest": layer.digest,
                "size": layer.size,
                "url": layer.url,
                "effective_url": layer.effective_url,
            }
            for index, layer in enumerate(session.layers)
        ]


async def read_layer_range(
    image: str,
    digest: str,
    offset: int,
    length: int,
    config: Optional[RegistryConfig] = None,
) -> bytes:
    """레이어 blob의 일부 바이트 범위를 전체 다운로드 없이 읽습니다.

    Args:
        image: 이미지 참조 (예: "ghcr.io/org/app:v1")
        digest: 읽을 레이어의 digest (예: "sha256:abc123...")
        offset: 시작 바이트 위치
        length: 읽을 최대 바이트 수 (레이어 크기에 맞게 잘립니다)

    Returns:
        bytes: 읽은 데이터 (offset이 레이어 끝 이후면 빈 bytes)

    Raises:
        LayerPeekError: 해당 digest의 레이어가 없거나 읽기 실패 시

    Examples:
        # 레이어의 gzip 헤더 확인
        head = await read_layer_range("nginx:alpine", "sha256:...", 0, 10)
        print(head[:2] == b"\\x1f\\x8b")
    """
    async with LayerSession(image, config) as session:
        for layer in session.layers:
            if layer.digest == digest:
                return await layer.read_range(offset, length)
    raise LayerPeekError(f"Layer {digest} is not part of {image}")


async def find_file(
    image: str,
    path: str,
    config: Optional[RegistryConfig] = None,
    opener: ArchiveOpener = open_tar_archive,
) -> Optional[LookupHit]:
    """모든 레이어에서 파일을 동시에 검색하고 최상위 레이어의 내용을 반환합니다.

    Args:
        image: 이미지 참조 (예: "ghcr.io/org/app:v1")
        path: 찾을 파일 경로 (예: "/etc/os-release")
        config: 세션 설정 (기본값: RegistryConfig())
        opener: 레이어를 아카이브로 여는 함수 (기본값: tar 리더)

    Returns:
        LookupHit | None: 파일을 포함한 가장 위 레이어의 결과, 없으면 None

    Raises:
        LookupTaskError: 레이어 검색 중 하나라도 실패한 경우 (첫 번째 오류)
        LayerPeekError: 세션 준비 실패 시

    Examples:
        hit = await find_file("localhost:15000/myapp:latest", "/etc/os-release")
        if hit:
            print(hit.payload.decode())
    """
    async with LayerSession(image, config) as session:
        return await session.find(path, opener=opener)
