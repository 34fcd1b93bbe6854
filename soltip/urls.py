"""
SOLTIP URL Configuration

This module defines URL patterns for the SOLTIP application, mapping
URL paths to their corresponding view functions.

URL Pattern Organization:
- Root and static pages (index, explore, create, about, etc.)
- JSON API (profiles, donations, transactions, fees, uploads, receipts)
- Dynamic creator profile URLs (must be last due to catch-all pattern)
"""

from django.urls import path

from . import views

urlpatterns = [
    # Main application pages
    path('', views.index, name='index'),
    path('explore/', views.explore, name='explore'),
    path('create/', views.create_profile_page, name='create_profile'),
    path('about/', views.about, name='about'),
    path('terms/', views.terms, name='terms'),
    path('privacy/', views.privacy, name='privacy'),

    # Profiles and donations
    path('api/profiles/', views.profiles_api, name='profiles_api'),
    path('api/profiles/<str:username>/', views.profile_api, name='profile_api'),
    path('api/profiles/<str:username>/donations/', views.donations_api, name='donations_api'),

    # Tip transactions and fees
    path('api/transactions/tip/', views.tip_transaction_api, name='tip_transaction_api'),
    path('api/fees/', views.fees_api, name='fees_api'),

    # Uploads and receipt metadata
    path('api/upload/', views.upload_api, name='upload_api'),
    path('api/receipts/<str:mint>/', views.receipt_metadata, name='receipt_metadata'),

    # Dynamic creator profile URLs (MUST be last due to catch-all pattern)
    path('<str:username>/', views.profile_page, name='profile_page'),
]
