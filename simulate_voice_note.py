import os
import sys
import time

import requests

BASE_URL = "http://127.0.0.1:8004"


def upload_voice_note(file_path, owner_kind, owner_id, user_id, poll_seconds=60):
    headers = {"X-User-Id": user_id}

    if not os.path.exists(file_path):
        print(f"Error: File '{file_path}' not found.")
        return

    print(f"Uploading {file_path} for {owner_kind} {owner_id}...")
    with open(file_path, 'rb') as f:
        files_data = {'file': (os.path.basename(file_path), f, 'audio/webm')}
        data = {'owner_kind': owner_kind, 'owner_id': owner_id}
        try:
            response = requests.post(f"{BASE_URL}/notes/voice", files=files_data, data=data, headers=headers)
        except Exception as e:
            print(f"Error uploading {file_path}: {str(e)}")
            return

    if response.status_code != 200:
        print(f"Failed ({response.status_code}): {response.text}")
        return

    note_id = response.json()["note_id"]
    print(f"Queued voice note {note_id}, polling for result...")

    for _ in range(poll_seconds):
        status = requests.get(f"{BASE_URL}/notes/voice/status", params={"note_id": note_id}, headers=headers).json()
        if status["status"] == "complete":
            note = status["note"]
            print(f"Summary: {note['summary']}")
            for item in note["action_items"]:
                print(f"  - {item}")
            return
        if status["status"] == "failed":
            print(f"Processing failed: {status['error']}")
            return
        time.sleep(1)

    print("Timed out waiting for the voice note to finish processing.")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python simulate_voice_note.py <audio file> [member|lead] [owner id] [user id]")
        sys.exit(1)

    file_path = sys.argv[1]
    owner_kind = sys.argv[2] if len(sys.argv) > 2 else "member"
    owner_id = sys.argv[3] if len(sys.argv) > 3 else "m-1"
    user_id = sys.argv[4] if len(sys.argv) > 4 else "u-adv-1"

    print(f"Starting voice note upload as {user_id}")
    upload_voice_note(file_path, owner_kind, owner_id, user_id)
