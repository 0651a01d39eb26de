# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

This package contains the acting-user extraction, validation error
formatting and error handling used by the referral API.
"""
