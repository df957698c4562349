# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Client and models for the Graylog universal search API."""

from graylog_pipeline.graylog.client import GraylogClient
from graylog_pipeline.graylog.models import SearchMessage, SearchResponse, TimeWindow

__all__ = ["GraylogClient", "SearchMessage", "SearchResponse", "TimeWindow"]
