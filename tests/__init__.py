# SPDX-License-Identifier: Apache-2.0
"""
cloudcall SDK tests

Suites per area: rest pipeline (compiler, filters, dispatch, interpreter,
jobs, engine), providers and configuration.
"""
