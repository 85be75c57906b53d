"""URL patterns for sharing app."""

from django.urls import path

from server.apps.sharing import views

app_name = 'sharing'

urlpatterns = [
    path('api/shares', views.share_collection, name='share-list'),
    path('api/shares/<str:link_id>', views.share_detail, name='share-detail'),
    path('s/<str:link_id>', views.resolve_share, name='resolve'),
]
