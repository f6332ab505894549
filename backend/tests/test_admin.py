from datetime import datetime, timezone

import jwt
from sqlmodel import Session, select

from careerbot import models
from careerbot.config import settings
from careerbot.database import engine
from careerbot.services import AuthService


def _attempt(topic, score):
    return {
        'topic': topic,
        'questions': [
            {'question': 'q?', 'options': ['a', 'b', 'c', 'd'], 'correctAnswer': 1, 'userAnswer': 1, 'isCorrect': True}
            for _ in range(4)
        ],
        'score': score,
        'totalQuestions': 4,
        'correctAnswers': 3,
        'timeTaken': 30,
    }


def test_dashboard_stats_shape(client, signup, admin_headers):
    signup('dash')
    data = client.get('/api/admin/dashboard/stats', headers=admin_headers).json()['data']
    assert set(data) == {'users', 'quizzes', 'resources', 'userGrowth'}
    assert data['users']['total'] >= 1
    assert data['users']['newThisMonth'] >= 1
    assert len(data['userGrowth']) == 7
    today = datetime.now(timezone.utc).date().isoformat()
    assert data['userGrowth'][-1]['date'] == today
    assert data['userGrowth'][-1]['count'] >= 1


def test_user_list_excludes_admins_and_reports_quiz_stats(client, signup, admin_headers):
    headers, user = signup('listing')
    client.post('/api/quiz/save-attempt', json=_attempt('Statistics', 70), headers=headers)
    client.post('/api/quiz/save-attempt', json=_attempt('Statistics', 91), headers=headers)

    data = client.get('/api/admin/users', params={'search': user['email']}, headers=admin_headers).json()['data']
    assert data['pagination']['totalUsers'] == 1
    row = data['users'][0]
    assert row['id'] == user['id']
    assert row['quizStats'] == {'totalAttempts': 2, 'averageScore': 81}
    assert 'passwordHash' not in row

    admins = client.get('/api/admin/users', params={'search': 'admin-'}, headers=admin_headers).json()['data']
    assert all(not u['isAdmin'] for u in admins['users'])


def test_user_detail_statistics(client, signup, admin_headers):
    headers, user = signup('detail')
    client.post('/api/quiz/save-attempt', json=_attempt('Biology', 75), headers=headers)
    data = client.get(f"/api/admin/users/{user['id']}", headers=admin_headers).json()['data']
    assert data['user']['email'] == user['email']
    assert len(data['quizAttempts']) == 1
    assert data['statistics'] == {
        'totalAttempts': 1,
        'averageScore': 75,
        'totalQuestions': 4,
        'totalCorrect': 3,
        'accuracy': 75,
    }
    assert client.get('/api/admin/users/999999', headers=admin_headers).status_code == 404


def test_update_user_fields(client, signup, admin_headers):
    _, user = signup('update')
    r = client.put(f"/api/admin/users/{user['id']}", json={'name': 'Asha', 'phone': '555-0101'}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['data']['name'] == 'Asha'
    assert r.json()['data']['phone'] == '555-0101'
    assert r.json()['data']['isActive'] is True

    _, other = signup('taken')
    clash = client.put(f"/api/admin/users/{user['id']}", json={'email': other['email']}, headers=admin_headers)
    assert clash.status_code == 400


def test_delete_user_cascades(client, signup, admin_headers):
    headers, user = signup('doomed')
    client.post('/api/chat/messages', json={'sender': 'user', 'message': 'bye'}, headers=headers)
    client.post('/api/quiz/save-attempt', json=_attempt('History', 50), headers=headers)

    r = client.delete(f"/api/admin/users/{user['id']}", headers=admin_headers)
    assert r.status_code == 200

    with Session(engine) as s:
        assert s.exec(select(models.ChatMessage).where(models.ChatMessage.user_id == user['id'])).all() == []
        assert s.exec(select(models.QuizAttempt).where(models.QuizAttempt.user_id == user['id'])).all() == []

    gone = client.get('/api/chat/messages', headers=headers)
    assert gone.status_code == 401
    assert client.delete(f"/api/admin/users/{user['id']}", headers=admin_headers).status_code == 404


def test_admin_cannot_be_deleted(client, admin_headers):
    token = admin_headers['Authorization'].split()[1]
    admin_id = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])['userId']
    r = client.delete(f'/api/admin/users/{admin_id}', headers=admin_headers)
    assert r.status_code == 403
    assert r.json()['message'] == 'Cannot delete admin user'


def test_quiz_performance_shape(client, signup, admin_headers):
    headers, _ = signup('perf')
    client.post('/api/quiz/save-attempt', json=_attempt('Chemistry', 88), headers=headers)
    data = client.get('/api/admin/quiz/performance', headers=admin_headers).json()['data']
    assert data['topStudents']
    assert set(data['topStudents'][0]) == {'user', 'averageScore', 'totalAttempts', 'totalCorrect'}
    assert data['topicPerformance']
    assert set(data['topicPerformance'][0]) == {'topic', 'averageScore', 'totalAttempts', 'totalStudents'}


def test_ensure_admin_creates_then_promotes(session):
    svc = AuthService(session)
    svc.signup('Promote@Example.com', 'secret123')
    user, created = svc.ensure_admin('promote@example.com', '')
    assert created is False
    assert user.is_admin and user.is_active
    assert svc.login('promote@example.com', 'secret123')[1].id == user.id

    fresh, created = svc.ensure_admin('boss@example.com', 'admin123', 'Boss')
    assert created is True
    assert fresh.name == 'Boss'
