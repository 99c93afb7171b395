"""
Job Board API
REST backend for a job board: accounts, companies, job postings and applications.

Architecture:
- MongoDB: all documents (users, companies, jobs, applications)
- Cloudinary: avatars, resumes and company logos
- SMTP: verification and password reset OTPs
"""

__version__ = "1.0.0"
