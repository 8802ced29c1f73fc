"""Shared pytest fixtures."""

import pytest


@pytest.fixture
def manifest_data() -> dict:
    """A manifest with one boot image and two distributions."""
    return {
        "version": "2024.06.1",
        "last_updated": "2024-06-01T12:00:00Z",
        "source": "github",
        "release_tags": {"userdata": "userdata-v3", "cache": "cache-v3"},
        "images": {
            "boot": {
                "url": "https://downloads.example.com/boot/boot.img",
                "description": "Boot image",
                "size": 4096,
                "size_human": "4 KB",
                "required": True,
            },
            "cache": {
                "ubuntu": {
                    "url": "https://github.com/org/images/releases/download/cache-v3/ubuntu-cache.zip",
                    "size": 2048,
                    "asset_id": 11,
                },
                "debian": {
                    "url": "https://github.com/org/images/releases/download/cache-v3/debian-cache.img",
                    "size": 2048,
                },
                "orphan": {
                    "url": "https://github.com/org/images/releases/download/cache-v3/orphan-cache.img",
                },
            },
            "userdata": {
                "ubuntu": {
                    "url": "https://github.com/org/images/releases/download/userdata-v3/ubuntu.7z",
                    "extracted_file": "ubuntu-userdata.img",
                    "size": 8192,
                },
                "debian": {
                    "url": "https://github.com/org/images/releases/download/userdata-v3/debian.zip",
                    "extracted_file": "debian-userdata.img",
                },
            },
        },
        "mirror_list": [
            "https://ghproxy.example.net/",
            "mirror.example.org",
            "",
            "https://ghproxy.example.net",
        ],
        "endpoints": {"config": "/api/config"},
        "stats": {"total_distros": 2},
        "unknown_field": "ignored",
    }
