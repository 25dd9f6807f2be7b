# SPDX-License-Identifier: LGPL-3.0-or-later
#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations

from peforge.__main__ import main

if __name__ == "__main__":
    main()
