# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID using coolnames.

    Human-readable identifiers are easier to trace in logs than hostnames
    or UUIDs when several importer instances ship to the same collector.

    Args:
        prefix: Optional prefix to prepend to the generated ID (e.g., "graylog-pipeline")

    Returns:
        A unique worker ID in the format "prefix-word1-word2" or "word1-word2"

    Examples:
        >>> generate_worker_id()
        'brave-tiger'
        >>> generate_worker_id("graylog-pipeline")
        'graylog-pipeline-swift-falcon'
    """
    slug = generate_slug(2)

    if prefix:
        return f"{prefix}-{slug}"

    return slug
