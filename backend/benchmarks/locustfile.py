import uuid

from locust import HttpUser, task, between


class ResearcherUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        payload = {"email": f"load-{uuid.uuid4().hex[:8]}@lab.com", "password": "password123"}
        r = self.client.post("/api/auth/register", json=payload)
        if r.status_code != 200:
            r = self.client.post("/api/auth/login", json=payload)
        token = r.json().get("access_token")
        self.headers = {"Authorization": f"Bearer {token}"}
        project = self.client.post("/api/projects", json={"title": "Load project"}, headers=self.headers)
        self.project_id = project.json()["id"]

    @task(3)
    def list_tasks(self):
        self.client.get("/api/tasks", params={"projectId": self.project_id}, headers=self.headers)

    @task(2)
    def read_feed(self):
        self.client.get("/api/notifications", headers=self.headers)

    @task(1)
    def create_and_archive_task(self):
        data = {"project_id": self.project_id, "title": "bench task"}
        created = self.client.post("/api/tasks", json=data, headers=self.headers).json()
        self.client.delete(f"/api/tasks/{created['id']}", headers=self.headers)

    @task(1)
    def audit_trail(self):
        self.client.get("/api/audit", params={"projectId": self.project_id, "limit": 20}, headers=self.headers)
