from django.urls import path
from . import views

urlpatterns = [
    path('sync-all/', views.sync_all, name='sync_all'),
    path('students/<int:student_id>/sync/', views.sync_student, name='sync_student'),
    path('students/<int:student_id>/contests/', views.student_contests, name='student_contests'),
    path('students/<int:student_id>/problems/', views.student_problems, name='student_problems'),
    path('students/<int:student_id>/reminder-toggle/', views.reminder_toggle, name='reminder_toggle'),
]
