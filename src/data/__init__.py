"""
Data loading and cleaning modules for Boston Neighborhood Change Project
"""
