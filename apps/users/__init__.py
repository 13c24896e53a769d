"""Users app package.

Custom user model with an email login and a marketplace role
(explorer, organizer, admin) plus JWT authentication endpoints.
"""
