"""
SOLTIP Project URL Configuration

Main URL configuration for the SOLTIP Django project. Most functionality is
handled by the 'soltip' application, with Django admin available at /admin/.

URL Structure:
- /admin/ - Django administrative interface
- / - All other URLs are handled by the soltip application

For more information on Django URL configuration:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    # Django admin interface for site administration
    path('admin/', admin.site.urls),

    # All application URLs are handled by the soltip app
    path('', include('soltip.urls')),
]

# Custom error handlers for better user experience
handler404 = 'soltip.views.custom_page_not_found'
