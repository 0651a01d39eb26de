# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Referral lifecycle workflow API.

Tracks a client's referral from intake through outreach attempts to a
verified linkage-to-care outcome, with an append-only audit trail.
"""

__version__ = "1.0.0"
