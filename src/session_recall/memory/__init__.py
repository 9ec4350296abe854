# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Session memory: indexes, embedders, session cache and the retrieval facade."""
