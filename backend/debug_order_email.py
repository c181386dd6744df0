import requests

url = "http://localhost:3000/send-order-email"
payload = {
    "order": {
        "id": "debug-1001",
        "customer": {
            "firstName": "Test",
            "lastName": "User",
            "phone": "0700000000",
            "email": "test@example.com",
            "address": "Test Street 1",
            "city": "Nairobi",
        },
        "items": [
            {
                "name": "Chunky Knit Throw",
                "image": "chunky-knit-throw.jpg",
                "price": 4500,
                "quantity": 1,
            }
        ],
        "pricing": {"subtotal": 4500, "shipping": 300, "total": 4800},
        "shippingMethod": {"name": "Rider delivery"},
        "payment": {"pochiNumber": "0700000000", "mpesaCode": "QWE123RTY"},
    }
}

try:
    print(f"Sending POST request to {url}...")
    response = requests.post(url, json=payload, timeout=30)
    print(f"Status Code: {response.status_code}")
    print("Response Body:")
    print(response.text)
except Exception as e:
    print(f"Error: {e}")
