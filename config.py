"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""

import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "school2025")
    DATABASE = os.environ.get("DATABASE", "school.db")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEFAULT_SCHOOL_ID = int(os.environ.get("DEFAULT_SCHOOL_ID", 1))

    # Q1 falls due in the start month, then every three months
    ACADEMIC_YEAR_START_MONTH = int(os.environ.get("ACADEMIC_YEAR_START_MONTH", 4))
    QUARTER_DUE_DAY = int(os.environ.get("QUARTER_DUE_DAY", 10))

    DEFAULT_PRINCIPAL_USERNAME = os.environ.get("DEFAULT_PRINCIPAL_USERNAME", "principal")
    DEFAULT_PRINCIPAL_PASSWORD = os.environ.get("DEFAULT_PRINCIPAL_PASSWORD", "principal123")
