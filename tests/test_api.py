"""HTTP surface: routes, payload shapes and error rendering."""

from datetime import timedelta

from trialmatch import models

from .conftest import NOW, words


def create_session(client, subject, **overrides):
    body = {
        "parentName": "Jane Parent",
        "parentEmail": "jane@example.com",
        "location": "14 George St, Parramatta",
        "lessons": [
            {
                "subjectId": subject.id,
                "studentName": "Sam Student",
                "studentGrade": "Year 10",
                "scheduledAt": (NOW + timedelta(days=3)).isoformat() + "Z",
                "durationMinutes": 60,
            }
        ],
    }
    body.update(overrides)
    response = client.post("/api/sessions", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestSessionRoutes:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "healthy"}

    def test_create_and_fetch(self, client, subject):
        created = create_session(client, subject)
        assert created["status"] == "Pending"
        assert created["location_type"] == "in_home"
        assert created["next_action"] == "request_match"
        assert created["feedback_type"] is None
        assert created["lessons"][0]["scheduled_at"].startswith("2025-03-06T09:00")

        fetched = client.get(f"/api/sessions/{created['id']}").json()
        assert fetched["id"] == created["id"]

    def test_unknown_session_renders_typed_error(self, client):
        response = client.get("/api/sessions/999")
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "NotFound"
        assert "999" in body["detail"]

    def test_request_validation_uses_same_shape(self, client):
        response = client.post("/api/sessions", json={"parentName": "x"})
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_full_trial_flow(self, client, subject, make_tutor, travel):
        travel.minutes_by_suburb.update({"Ryde": 20, "Epping": 35})
        t1 = make_tutor(suburb="Epping")
        t2 = make_tutor(suburb="Ryde")
        session = create_session(client, subject)
        sid = session["id"]

        matched = client.post(f"/api/sessions/{sid}/match").json()["matchedTutors"]
        assert [m["id"] for m in matched] == [t2.id, t1.id]
        assert matched[0]["travelTimeText"] == "20 mins"

        started = client.post(f"/api/sessions/{sid}/start-outreach", json={"matchedTutors": matched})
        assert started.status_code == 200
        assert started.json()["attemptsCreated"] == 2
        assert started.json()["session"]["next_action"] == "await_tutor_responses"

        offers = client.get(f"/api/tutors/{t2.id}/outreach-attempts").json()
        assert len(offers) == 1

        accepted = client.post(f"/api/outreach-attempts/{offers[0]['id']}/respond", json={"response": "accepted"})
        assert accepted.status_code == 200
        assert accepted.json()["outcome"] == "confirmed"
        assert accepted.json()["sessionStatus"] == "Confirmed"

        late = client.get(f"/api/tutors/{t1.id}/outreach-attempts").json()
        assert late == []

        diagnostic = client.post(
            f"/api/sessions/{sid}/submit-diagnostic-enhanced",
            json={"tutorId": t2.id, "assessment": words(40), "suggestions": words(30)},
        )
        assert diagnostic.status_code == 200
        assert diagnostic.json()["session"]["feedback_type"] == "reflection"

        reflection = client.post(
            f"/api/sessions/{sid}/submit-reflection-enhanced",
            json={"tutorId": t2.id, "reflection": words(40), "plan": words(30)},
        )
        assert reflection.json()["session"]["status"] == "Trial 2 Complete - Reflection Submitted"

        done = client.post(f"/api/sessions/{sid}/confirm-continuation")
        assert done.json()["session"]["status"] == "Student Continuing - Awaiting Schedule"
        assert done.json()["session"]["next_action"] == "schedule_permanent_lessons"

    def test_losing_the_race_is_not_an_error(self, client, db, subject, make_tutor):
        t1, t2 = make_tutor(), make_tutor()
        sid = create_session(client, subject)["id"]
        client.post(f"/api/sessions/{sid}/start-outreach", json={"matchedTutors": [t1.id, t2.id]})
        attempts = {a.tutor_id: a.id for a in db.query(models.OutreachAttempt)}

        client.post(f"/api/outreach-attempts/{attempts[t2.id]}/respond", json={"response": "accepted"})
        response = client.post(f"/api/outreach-attempts/{attempts[t1.id]}/respond", json={"response": "accepted"})

        assert response.status_code == 200
        assert response.json()["outcome"] == "already_assigned"
        assert response.json()["assignedTutorId"] == t2.id

    def test_illegal_transition_is_409(self, client, subject):
        sid = create_session(client, subject)["id"]
        response = client.post(f"/api/sessions/{sid}/confirm-continuation")
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransition"

    def test_short_feedback_is_422(self, client, subject, make_tutor):
        tutor = make_tutor()
        sid = create_session(client, subject)["id"]
        client.post(f"/api/sessions/{sid}/assign", json={"tutorId": tutor.id})
        response = client.post(
            f"/api/sessions/{sid}/submit-diagnostic-enhanced",
            json={"tutorId": tutor.id, "assessment": "too short", "suggestions": words(30)},
        )
        assert response.status_code == 422
        assert response.json()["context"]["minimum"] == 40

    def test_waitlist_self_join(self, client, subject, make_tutor):
        tutor = make_tutor()
        sid = create_session(client, subject)["id"]
        client.post(f"/api/sessions/{sid}/assign", json={"tutorId": tutor.id})
        response = client.post(f"/api/sessions/{sid}/join-waitlist", json={"tutorId": tutor.id})
        assert response.json() == {"joined": False, "alreadyAssigned": True, "alreadyListed": False}


class TestCancellationRoutes:
    def test_cancel_and_override(self, client, subject, make_tutor, sentiment):
        sentiment.value = 0.1
        tutor = make_tutor()
        session = create_session(
            client,
            subject,
            lessons=[
                {
                    "subjectId": subject.id,
                    "studentName": "Sam",
                    "scheduledAt": (NOW + timedelta(hours=2)).isoformat(),
                }
            ],
        )
        sid = session["id"]
        client.post(f"/api/sessions/{sid}/assign", json={"tutorId": tutor.id})

        cancelled = client.post(
            f"/api/sessions/{sid}/cancel", json={"cancelingTutorId": tutor.id, "reason": "busy"}
        ).json()
        assert cancelled["session"]["status"] == "Pending"
        analysis = cancelled["analysis"]
        assert analysis["calculated_penalty"] == 4.35
        assert analysis["severity"] == "high"

        missing_reason = client.post(
            f"/api/cancellation-analysis/{analysis['id']}/override",
            json={"overridePenalty": -1.0, "overrideReason": " ", "adminId": "admin-1"},
        )
        assert missing_reason.status_code == 422

        overridden = client.post(
            f"/api/cancellation-analysis/{analysis['id']}/override",
            json={"overridePenalty": -1.0, "overrideReason": "goodwill", "adminId": "admin-1"},
        ).json()
        assert overridden["final_penalty"] == -1.0
        assert overridden["admin_override"] is True
        assert overridden["effective_penalty"] == -1.0

        listing = client.get("/api/cancellation-analysis").json()
        assert listing["totalAnalyses"] == 1
        assert listing["overrideCount"] == 1

        performance = client.get("/api/tutors/performance").json()
        assert performance["tutors"][0]["score_reliability"] == 6.0


class TestRescheduleRoutes:
    def test_create_respond_and_list(self, client, subject, make_tutor, clock):
        tutor = make_tutor()
        sid = create_session(client, subject)["id"]
        client.post(f"/api/sessions/{sid}/assign", json={"tutorId": tutor.id})

        created = client.post(
            f"/api/sessions/{sid}/reschedule",
            json={
                "newDateTime": (NOW + timedelta(days=6)).isoformat() + "+00:00",
                "reason": "school camp",
                "requesterId": 42,
                "requesterType": "parent",
            },
        )
        assert created.status_code == 201
        request = created.json()
        assert request["priority_tutor_id"] == tutor.id
        assert request["requester_id"] == "42"

        declined = client.post(
            f"/api/reschedule-requests/{request['id']}/respond",
            json={"response": "declined", "tutorId": tutor.id},
        ).json()
        assert declined["request"]["status"] == "rejected"
        assert declined["matchedTutors"] == []
        assert client.get(f"/api/sessions/{sid}").json()["status"] == "Pending"

        listing = client.get("/api/reschedule-requests").json()
        assert listing["counts"]["rejected"] == 1

    def test_list_expires_lapsed_windows(self, client, subject, make_tutor, clock):
        tutor = make_tutor()
        sid = create_session(client, subject)["id"]
        client.post(f"/api/sessions/{sid}/assign", json={"tutorId": tutor.id})
        client.post(
            f"/api/sessions/{sid}/reschedule",
            json={"newDateTime": (NOW + timedelta(days=6)).isoformat(), "requesterType": "parent"},
        )

        clock.advance(hours=25)
        listing = client.get("/api/reschedule-requests").json()

        assert listing["counts"]["expired"] == 1
        assert listing["requests"][0]["resolved_by"] == "system"
        assert client.get(f"/api/sessions/{sid}").json()["status"] == "Pending"


class TestTutorRoutes:
    def test_manual_score_update(self, client, make_tutor):
        tutor = make_tutor()
        response = client.put(
            f"/api/tutors/{tutor.id}/scores",
            json={"score_success": 8, "score_reliability": 9, "score_availability": 10, "adminId": "admin-1"},
        )
        assert response.status_code == 200
        assert response.json()["composite_score"] == 720.0

    def test_out_of_range_score(self, client, make_tutor):
        tutor = make_tutor()
        response = client.put(
            f"/api/tutors/{tutor.id}/scores",
            json={"score_success": 8, "score_reliability": 19, "score_availability": 10, "adminId": "admin-1"},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"
