# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog - Personal Video Game Backlog Tracker

Self-update service for self-hosted GameLog deployments: checks GitHub
Releases for new versions and applies them in place.
"""

__version__ = "1.3.0"
__author__ = "The GameLog Authors"
