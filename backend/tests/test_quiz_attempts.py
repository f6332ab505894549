import pytest

from careerbot import models, services
from careerbot.errors import NotFound, ValidationError
from careerbot.schemas import QuizAttemptIn


def _question(i, correct=0, answer=0):
    return {
        'question': f'Question {i}?',
        'options': ['a', 'b', 'c', 'd'],
        'correctAnswer': correct,
        'explanation': 'because',
        'userAnswer': answer,
        'isCorrect': correct == answer,
    }


def _attempt(topic='Data Science', score=80, n=5, correct=4, time_taken=120):
    return {
        'topic': topic,
        'questions': [_question(i) for i in range(n)],
        'score': score,
        'totalQuestions': n,
        'correctAnswers': correct,
        'timeTaken': time_taken,
    }


def test_save_and_fetch_attempt(client, signup):
    headers, user = signup()
    r = client.post('/api/quiz/save-attempt', json=_attempt(), headers=headers)
    assert r.status_code == 201
    saved = r.json()['data']
    assert saved['userId'] == user['id']
    assert saved['totalQuestions'] == 5
    assert saved['questions'][0]['correctAnswer'] == 0
    assert saved['questions'][0]['userAnswer'] == 0
    assert 'completedAt' in saved

    one = client.get(f"/api/quiz/attempts/{saved['id']}", headers=headers)
    assert one.status_code == 200
    assert one.json()['data']['topic'] == 'Data Science'


def test_attempts_listed_newest_first(client, signup):
    headers, _ = signup()
    ids = [client.post('/api/quiz/save-attempt', json=_attempt(topic=t), headers=headers).json()['data']['id'] for t in ('A', 'B', 'C')]
    listed = client.get('/api/quiz/attempts', headers=headers).json()['data']
    assert [a['id'] for a in listed] == list(reversed(ids))


def test_statistics_over_attempts(client, signup):
    headers, _ = signup()
    for topic, score in [('Python', 80), ('Python', 60), ('python', 100)]:
        client.post('/api/quiz/save-attempt', json=_attempt(topic=topic, score=score), headers=headers)
    stats = client.get('/api/quiz/statistics', headers=headers).json()['data']
    assert stats['totalAttempts'] == 3
    assert stats['totalQuestionsAnswered'] == 15
    assert stats['totalCorrectAnswers'] == 12
    assert stats['averageScore'] == 80
    assert stats['topicStats']['Python'] == {'attempts': 2, 'totalScore': 140, 'averageScore': 70}
    assert stats['topicStats']['python'] == {'attempts': 1, 'totalScore': 100, 'averageScore': 100}


def test_statistics_without_attempts(client, signup):
    headers, _ = signup()
    stats = client.get('/api/quiz/statistics', headers=headers).json()['data']
    assert stats == {
        'totalAttempts': 0,
        'totalQuestionsAnswered': 0,
        'totalCorrectAnswers': 0,
        'averageScore': 0,
        'topicStats': {},
    }


def test_invalid_attempts_rejected(client, signup):
    headers, _ = signup()
    empty = _attempt()
    empty['questions'] = []
    empty['totalQuestions'] = 0
    assert client.post('/api/quiz/save-attempt', json=empty, headers=headers).status_code == 400

    no_topic = _attempt(topic='  ')
    assert client.post('/api/quiz/save-attempt', json=no_topic, headers=headers).status_code == 400

    mismatch = _attempt()
    mismatch['totalQuestions'] = 7
    assert client.post('/api/quiz/save-attempt', json=mismatch, headers=headers).status_code == 400

    too_many_correct = _attempt(correct=6)
    assert client.post('/api/quiz/save-attempt', json=too_many_correct, headers=headers).status_code == 400

    bad_score = _attempt(score=140)
    assert client.post('/api/quiz/save-attempt', json=bad_score, headers=headers).status_code == 400

    three_options = _attempt()
    three_options['questions'][0]['options'] = ['a', 'b', 'c']
    r = client.post('/api/quiz/save-attempt', json=three_options, headers=headers)
    assert r.status_code == 400
    assert r.json()['success'] is False

    assert client.get('/api/quiz/attempts', headers=headers).json()['data'] == []


def test_attempts_are_private(client, signup):
    alice, _ = signup('alice')
    bob, _ = signup('bob')
    attempt_id = client.post('/api/quiz/save-attempt', json=_attempt(), headers=alice).json()['data']['id']
    r = client.get(f'/api/quiz/attempts/{attempt_id}', headers=bob)
    assert r.status_code == 404
    assert r.json() == {'success': False, 'message': 'Quiz attempt not found'}
    assert client.get('/api/quiz/attempts', headers=bob).json()['data'] == []


def test_compute_score_bounds():
    assert services.compute_score(5, 5) == 100
    assert services.compute_score(0, 5) == 0
    assert services.compute_score(2, 3) == 67
    with pytest.raises(ValidationError):
        services.compute_score(0, 0)
    with pytest.raises(ValidationError):
        services.compute_score(6, 5)


def test_statistics_round_half_up():
    attempts = [
        models.QuizAttempt(user_id=1, topic='t', score=80, total_questions=1, correct_answers=1),
        models.QuizAttempt(user_id=1, topic='t', score=81, total_questions=1, correct_answers=1),
    ]
    stats = services.compute_statistics(attempts)
    assert stats.average_score == 81
    assert stats.topic_stats['t'].average_score == 81


def test_service_ownership_and_stored_score(session):
    owner = models.User(email='o@example.com', password_hash='x')
    other = models.User(email='p@example.com', password_hash='x')
    session.add(owner)
    session.add(other)
    session.commit()
    svc = services.QuizService(session)
    payload = QuizAttemptIn.model_validate(_attempt(score=90, correct=1))
    saved = svc.save(owner.id, payload)
    # the reported score is kept even though it disagrees with correctAnswers
    assert saved.score == 90
    assert svc.get_one(owner.id, saved.id).id == saved.id
    with pytest.raises(NotFound):
        svc.get_one(other.id, saved.id)
