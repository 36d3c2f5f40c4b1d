"""Attendance analytics for academic advisors."""
